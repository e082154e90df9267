"""JSON schema and SHACL validation of events."""

import logging
from typing import Any

from jsonschema import Draft202012Validator
from pyshacl import validate as shacl_validate
from rdflib import Graph

from fednode.errors import (
    ConfigurationError,
    MappingError,
    SchemaValidationError,
    ShapeValidationError,
)

logger = logging.getLogger(__name__)


class JsonSchemaValidator:
    def validate(self, payload: Any, schema: dict[str, Any]) -> None:
        """Raise SchemaValidationError listing every violation in the payload."""
        validator = Draft202012Validator(schema)
        errors = sorted(
            validator.iter_errors(payload),
            key=lambda err: [str(part) for part in err.absolute_path],
        )
        violations = [
            f"{'/'.join(str(part) for part in error.absolute_path) or '$'}: {error.message}"
            for error in errors
        ]
        if violations:
            raise SchemaValidationError(
                f"event does not match schema ({len(violations)} violations)",
                violations=violations,
            )


class ShaclShapeValidator:
    def validate(self, rdf: str, shapes: list[str]) -> None:
        """Validate against the union of the given shape documents."""
        if not shapes:
            return
        shapes_graph = Graph()
        for shape in shapes:
            try:
                shapes_graph.parse(data=shape, format="turtle")
            except Exception as exc:
                raise ConfigurationError(f"shape document is not valid turtle: {exc}") from exc
        data_graph = Graph()
        try:
            data_graph.parse(data=rdf, format="turtle")
        except Exception as exc:
            raise MappingError(f"event rdf could not be parsed: {exc}") from exc
        conforms, _, report = shacl_validate(
            data_graph,
            shacl_graph=shapes_graph,
            inference="none",
            abort_on_first=False,
        )
        if not conforms:
            logger.info("Event RDF failed shape validation")
            raise ShapeValidationError("event does not conform to shapes", report=str(report))
