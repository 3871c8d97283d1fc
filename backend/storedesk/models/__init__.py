# Import models here so Alembic can discover metadata.
from storedesk.models.organization import Organization  # noqa: F401
from storedesk.models.membership import Membership  # noqa: F401
