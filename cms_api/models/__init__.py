"""Central model registry: import all models so Alembic autodiscover works."""

from cms_api.database import Base  # noqa: F401

from cms_api.models.exchange_rate import ExchangeRate  # noqa: F401
from cms_api.models.carousel import CarouselItem  # noqa: F401
from cms_api.models.board_member import BoardMember  # noqa: F401
