"""
Validación estructural del texto Cypher antes de ejecutarlo.

Reglas:
    1. Debe ser un string no vacío
    2. Máximo MAX_CYPHER_LENGTH caracteres (límite inclusivo)
    3. Opcional: denylist de patrones (regex, case-insensitive)

La denylist está desactivada por defecto. DEFAULT_ADMIN_PATTERNS cubre los
procedimientos administrativos más sensibles y se activa con
CYPHER_DENYLIST=admin.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Pattern, Sequence, Union

MAX_CYPHER_LENGTH = 10_000

MSG_NOT_A_STRING = "Cypher query must be a non-empty string"
MSG_TOO_LONG = f"Cypher query too long (max {MAX_CYPHER_LENGTH} characters)"
MSG_FORBIDDEN = "This operation is not allowed"

DEFAULT_ADMIN_PATTERNS = (
    r"CALL\s+dbms\.security",
    r"CALL\s+db\.createUser",
    r"CALL\s+db\.dropUser",
)


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    error: Optional[str] = None

    def __bool__(self) -> bool:
        return self.valid


VALID = ValidationResult(valid=True)


def compile_patterns(patterns: Iterable[Union[str, Pattern[str]]]) -> tuple[Pattern[str], ...]:
    compiled = []
    for pattern in patterns:
        if isinstance(pattern, str):
            compiled.append(re.compile(pattern, re.IGNORECASE))
        else:
            compiled.append(pattern)
    return tuple(compiled)


def validate_cypher(
    cypher: Any,
    forbidden_patterns: Sequence[Union[str, Pattern[str]]] = (),
) -> ValidationResult:
    """
    Valida el texto de una consulta Cypher.

    Args:
        cypher: Valor recibido en el body (puede no ser string)
        forbidden_patterns: Regex prohibidas; strings se compilan con IGNORECASE

    Returns:
        ValidationResult(valid=True) o ValidationResult(valid=False, error=...)
    """
    if not cypher or not isinstance(cypher, str):
        return ValidationResult(False, MSG_NOT_A_STRING)

    if len(cypher) > MAX_CYPHER_LENGTH:
        return ValidationResult(False, MSG_TOO_LONG)

    for pattern in compile_patterns(forbidden_patterns):
        if pattern.search(cypher):
            return ValidationResult(False, MSG_FORBIDDEN)

    return VALID
