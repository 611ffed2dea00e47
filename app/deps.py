from __future__ import annotations

from typing import Annotated, TypeAlias

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from db.session import get_db

DbDep: TypeAlias = Annotated[AsyncSession, Depends(get_db)]
