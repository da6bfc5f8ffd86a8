import datetime, logging
from app.src.constants import LOCATION_RETENTION_DAYS
from app.src.db import sessionMaker, DriverLocation
from sqlalchemy.orm import Session
from sqlalchemy import delete

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("Cleaner")


def removeOldLocations(session: Session, retentionDays: int = LOCATION_RETENTION_DAYS):
    currentTime = datetime.datetime.now(datetime.timezone.utc)
    cutOff = currentTime - datetime.timedelta(days=retentionDays)
    result = session.execute(
        delete(DriverLocation).where(DriverLocation.timestamp < cutOff)
    )
    session.commit()
    deletedCount = result.rowcount
    logger.info(f"Removed {deletedCount} rows from {DriverLocation.__tablename__} table")
    return deletedCount


def main():
    try:
        with sessionMaker() as session:
            removeOldLocations(session)
    except Exception:
        logger.exception("cleaner.py failed")


if __name__ == "__main__":
    main()
