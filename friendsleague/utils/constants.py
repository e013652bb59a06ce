"""
Shared limits for validation and business rules.
"""

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 20
USERNAME_PATTERN = r"^[a-zA-Z0-9_!?]+$"

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 100

PHONE_PATTERN = r"^\+?[1-9]\d{1,14}$"

BIO_MAX_LENGTH = 150

NAME_MIN_LENGTH = 3
NAME_MAX_LENGTH = 50
DESCRIPTION_MAX_LENGTH = 200

RULE_POINTS_MIN = -1000
RULE_POINTS_MAX = 1000
POINTS_REASON_MAX_LENGTH = 100

EVENT_MIN_PARTICIPANTS = 2
EVENT_MAX_PARTICIPANTS = 100

FRIEND_INVITATION_EXPIRY_DAYS = 7
EVENT_INVITATION_DEFAULT_DAYS = 7
EVENT_INVITATION_MAX_DAYS = 30

USER_SEARCH_LIMIT = 10
USER_SEARCH_MIN_QUERY = 2

MESSAGE_PAGE_SIZE = 50
MESSAGE_PAGE_SIZE_MAX = 100
EPHEMERAL_MAX_VIEW_SECONDS = 60
REACTION_MAX_LENGTH = 16
