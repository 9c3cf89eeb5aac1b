from classifieds.repositories.gateway import InMemoryGateway, PersistenceGateway
from classifieds.repositories.sqlalchemy_gateway import SqlAlchemyGateway

__all__ = ["PersistenceGateway", "InMemoryGateway", "SqlAlchemyGateway"]
