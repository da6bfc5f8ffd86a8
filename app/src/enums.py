from enum import IntEnum, IntFlag


class AppID(IntEnum):
    ADMIN = 1
    DRIVER = 2
    AUTH = 3


class OrderIn(IntEnum):
    ASC = 1
    DESC = 2


class UserRole(IntEnum):
    DRIVER = 1
    ADMIN = 2
    SUPER_ADMIN = 3


class RouteStatus(IntEnum):
    PENDING = 1
    IN_PROGRESS = 2
    COMPLETED = 3
    CANCELLED = 4


class StopStatus(IntEnum):
    PENDING = 1
    ON_THE_WAY = 2
    ARRIVED = 3
    COMPLETED = 4
    FAILED = 5


class PaymentMethod(IntFlag):
    CASH = 1
    CHECK = 2
    CREDIT_CARD = 4


class VehicleStatus(IntEnum):
    ACTIVE = 1
    MAINTENANCE = 2
    RETIRED = 3


class DeclarationType(IntEnum):
    DAILY = 1
    ROUTE = 2


class DocumentCategory(IntEnum):
    OTHER = 1
    SAFETY = 2
    POLICY = 3
    PROCEDURE = 4
    TRAINING = 5
    COMPLIANCE = 6


class MergePolicy(IntEnum):
    ADDRESS_FIRST = 1
    OLDEST = 2
    MOST_STOPS = 3


class AttendanceAction(IntEnum):
    CONTINUE = 1
    CLOCK_IN = 2
    CONTACT_ADMIN = 3


class KPIPeriod(IntEnum):
    DAILY = 1
    WEEKLY = 2
    MONTHLY = 3
