"""Runtime settings: environment defaults with database overrides."""

import os
import logging
from typing import Dict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from errors import InputValidationError
from models import AppSetting

logger = logging.getLogger("teamboard.settings")

DEFAULTS: Dict[str, str] = {
    "min_work_hours_per_day": os.getenv("MIN_WORK_HOURS_PER_DAY", "4"),
    "max_work_hours_per_day": os.getenv("MAX_WORK_HOURS_PER_DAY", "12"),
    "enable_work_hours_limit": os.getenv("ENABLE_WORK_HOURS_LIMIT", "false"),
}

BOOLEAN_KEYS = {"enable_work_hours_limit"}


async def get_settings(db: AsyncSession) -> Dict[str, str]:
    values = dict(DEFAULTS)
    result = await db.execute(select(AppSetting).where(AppSetting.key.in_(DEFAULTS.keys())))
    for row in result.scalars().all():
        values[row.key] = row.value
    return values


async def get_float(db: AsyncSession, key: str) -> float:
    values = await get_settings(db)
    try:
        return float(values[key])
    except ValueError:
        logger.warning(f"Setting {key}={values[key]!r} is not numeric, using default")
        return float(DEFAULTS[key])


async def get_bool(db: AsyncSession, key: str) -> bool:
    values = await get_settings(db)
    return values[key].lower() in ("1", "true", "yes", "on")


def _normalise(key: str, value: str) -> str:
    if key not in DEFAULTS:
        raise InputValidationError(f"Unknown setting: {key}")
    if key in BOOLEAN_KEYS:
        lowered = value.lower()
        if lowered not in ("true", "false"):
            raise InputValidationError(f"{key} must be true or false")
        return lowered
    try:
        number = float(value)
    except ValueError:
        raise InputValidationError(f"{key} must be a number")
    if number < 0 or number > 24:
        raise InputValidationError(f"{key} must be between 0 and 24")
    return value


async def set_setting(db: AsyncSession, key: str, value: str) -> AppSetting:
    value = _normalise(key, value)
    row = await db.get(AppSetting, key)
    if row:
        row.value = value
    else:
        row = AppSetting(key=key, value=value)
        db.add(row)
    await db.commit()
    logger.info(f"Setting {key} changed to {value}")
    return row
