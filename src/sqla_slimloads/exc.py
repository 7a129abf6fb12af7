from __future__ import annotations

from sqlalchemy.exc import ArgumentError


class UnknownAssociationError(ArgumentError):
    """A column specification names an association the entity does not have.

    Raised for top-level names when ``with_columns()`` / ``without_columns()``
    is called, and for nested names while the load is being resolved.
    """

    name: str
    model: type | None

    def __init__(self, name: str, model: type | None = None) -> None:
        self.name = name
        self.model = model
        where = f" on {model.__name__}" if model is not None else ""
        super().__init__(f"Unknown association: {name}{where}")
