from __future__ import annotations


class NotFoundError(LookupError):
    def __init__(self, entity: str, entity_id: object) -> None:
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class AlreadyExistsError(ValueError):
    pass
