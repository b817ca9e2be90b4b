"""分页工具，返回 {data, pagination} 信封中的两部分"""

import math

from sqlalchemy import select, func
from sqlalchemy.orm import Session


def paginate(db: Session, stmt, page: int = 1, limit: int = 20):
    page = max(int(page or 1), 1)
    limit = max(int(limit or 1), 1)

    total = db.execute(
        select(func.count()).select_from(stmt.order_by(None).subquery())
    ).scalar_one()

    data = db.execute(
        stmt.offset((page - 1) * limit).limit(limit)
    ).scalars().all()

    total_pages = math.ceil(total / limit) if total else 0
    return list(data), {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": total_pages,
        "hasNext": page < total_pages,
        "hasPrev": page > 1,
    }
