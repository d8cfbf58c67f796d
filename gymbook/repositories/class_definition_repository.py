# gymbook/repositories/class_definition_repository.py
"""Class definition data access."""

from sqlalchemy.orm import Session

from ..models.class_definition import ClassDefinition
from .scoped_repository import ScopedRepository


class ClassDefinitionRepository(ScopedRepository[ClassDefinition]):
    def __init__(self, db: Session):
        super().__init__(db, ClassDefinition)
