from imodel_transformer.repository.base import Repository
from imodel_transformer.repository.sqlite import SqliteRepository

__all__ = ["Repository", "SqliteRepository"]
