"""
Rule Parser

Parses classification rule definitions from YAML format and checks drafts
against the field-level validation gate.
"""

import logging
import yaml
from typing import Any, Dict, List, Optional, Sequence, Union
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from classification.compiler import PatternCompiler
from classification.models import ClassificationRule, RuleDraft, ValidationResult
from exceptions import ValidationError


logger = logging.getLogger("VigilRuleParser")

RULE_FIELDS = (
    "rule_type",
    "condition_pattern",
    "classification_value",
    "confidence_score",
    "priority",
    "is_active",
    "source_types",
    "created_by"
)


def field_errors(error: PydanticValidationError) -> List[Dict[str, str]]:
    """Flatten a pydantic error into ``{"field", "message"}`` entries."""
    errors = []
    for item in error.errors():
        loc = ".".join(str(part) for part in item.get("loc", ())) or "__root__"
        errors.append({"field": loc, "message": item.get("msg", "invalid value")})
    return errors


class RuleParser:
    """
    Parse rule definitions from YAML format.

    A document may hold a single rule mapping, a list of rules, or a
    mapping with a ``rules`` list (and optionally a ``processing_order``).
    """

    def __init__(self, rule_types: Optional[Sequence[str]] = None):
        """
        Initialize the rule parser.

        Args:
            rule_types: Known dimensions; when given, drafts are checked against them
        """
        self.rule_types = [t.lower() for t in rule_types] if rule_types else None

    def parse_yaml_file(self, file_path: str) -> List[RuleDraft]:
        """
        Parse rules from a YAML file.

        Args:
            file_path: Path to YAML file

        Returns:
            Parsed drafts, in file order

        Raises:
            ValidationError: If the file is missing, malformed or holds an invalid rule
        """
        return self.parse_yaml_document(self.load_document(file_path))

    def load_document(self, file_path: str) -> Any:
        """
        Load a YAML rule document without parsing its rules.

        Raises:
            ValidationError: If the file is missing, malformed or empty
        """
        try:
            with open(file_path, 'r') as f:
                yaml_content = yaml.safe_load(f)
        except FileNotFoundError:
            raise ValidationError(
                f"Rule file not found: {file_path}",
                component="RuleParser",
                context={"errors": [{"field": "file", "message": "not found"}]}
            )
        except yaml.YAMLError as e:
            raise ValidationError(
                f"Invalid YAML syntax in {file_path}: {e}",
                component="RuleParser",
                context={"errors": [{"field": "file", "message": "invalid YAML"}]}
            )

        if not yaml_content:
            raise ValidationError(
                f"Empty YAML file: {file_path}",
                component="RuleParser",
                context={"errors": [{"field": "file", "message": "empty document"}]}
            )

        return yaml_content

    def parse_yaml_document(self, document: Union[Dict[str, Any], List[Any]]) -> List[RuleDraft]:
        """Parse every rule in a loaded YAML document."""
        if isinstance(document, dict) and "rules" in document:
            entries = document["rules"]
        elif isinstance(document, dict):
            entries = [document]
        else:
            entries = document

        if not isinstance(entries, list):
            raise ValidationError(
                "Rules must be a list",
                component="RuleParser",
                context={"errors": [{"field": "rules", "message": "must be a list"}]}
            )

        drafts = []
        for index, entry in enumerate(entries):
            try:
                drafts.append(self.parse_yaml_dict(entry))
            except ValidationError as e:
                e.context["index"] = index
                raise
        return drafts

    def parse_processing_order(self, document: Any) -> Optional[List[str]]:
        """
        The ``processing_order`` key of a document, if present.

        Raises:
            ValidationError: If the value is not a list of rule types
        """
        if not isinstance(document, dict) or not document.get("processing_order"):
            return None

        order = document["processing_order"]
        if not isinstance(order, list):
            raise ValidationError(
                "processing_order must be a list of rule types",
                component="RuleParser",
                context={"errors": [{"field": "processing_order", "message": "must be a list"}]}
            )
        return [str(t).lower() for t in order]

    def parse_yaml_dict(self, yaml_data: Dict[str, Any]) -> RuleDraft:
        """
        Parse one rule from a YAML mapping.

        Args:
            yaml_data: YAML data as dictionary

        Returns:
            Parsed RuleDraft

        Raises:
            ValidationError: On missing or invalid fields
        """
        if not isinstance(yaml_data, dict):
            raise ValidationError(
                "Rule definition must be a mapping",
                component="RuleParser",
                context={"errors": [{"field": "rule", "message": "must be a mapping"}]}
            )

        # Accept the short 'pattern'/'value' spellings used in hand-written files.
        data = dict(yaml_data)
        if "pattern" in data and "condition_pattern" not in data:
            data["condition_pattern"] = data.pop("pattern")
        if "value" in data and "classification_value" not in data:
            data["classification_value"] = data.pop("value")
        if "confidence" in data and "confidence_score" not in data:
            data["confidence_score"] = data.pop("confidence")

        unknown = sorted(set(data) - set(RULE_FIELDS) - {"id"})
        if unknown:
            logger.warning(f"Ignoring unknown rule fields: {unknown}")

        try:
            return RuleDraft(**{k: v for k, v in data.items() if k in RULE_FIELDS})
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid rule definition",
                component="RuleParser",
                context={"errors": field_errors(e)}
            )

    def validate_rule(self, draft: RuleDraft, compiler: PatternCompiler) -> ValidationResult:
        """
        Validate a draft.

        Args:
            draft: Rule to validate
            compiler: Compiler used to check the condition pattern

        Returns:
            ValidationResult with any errors/warnings
        """
        errors: List[Dict[str, str]] = []
        warnings: List[str] = []

        if self.rule_types is not None and draft.rule_type not in self.rule_types:
            errors.append({"field": "rule_type", "message": f"must be one of {self.rule_types}"})

        compiled = compiler.compile(draft.condition_pattern)
        if not compiled.ok:
            errors.extend(compiled.error.errors)
        elif compiled.matcher.matches(""):
            warnings.append("Pattern matches empty text - rule will match every input")

        if not draft.classification_value or not draft.classification_value.strip():
            errors.append({"field": "classification_value", "message": "must not be empty"})

        if draft.confidence_score is not None and draft.confidence_score < 0.5:
            warnings.append("Confidence is below 0.5")

        return ValidationResult(
            valid=len(errors) == 0,
            errors=errors,
            warnings=warnings
        )

    def parse_multiple_files(self, directory: str) -> List[RuleDraft]:
        """
        Parse all YAML rule files in a directory, in file-name order.

        Args:
            directory: Directory containing rule files

        Returns:
            List of parsed drafts; files that fail to parse are skipped
        """
        rule_dir = Path(directory)

        if not rule_dir.exists():
            raise ValidationError(
                f"Directory not found: {directory}",
                component="RuleParser",
                context={"errors": [{"field": "directory", "message": "not found"}]}
            )

        files = sorted(list(rule_dir.glob('*.yaml')) + list(rule_dir.glob('*.yml')))
        drafts = []
        for yaml_file in files:
            try:
                drafts.extend(self.parse_yaml_file(str(yaml_file)))
            except ValidationError as e:
                # Log error but continue parsing other files
                logger.warning(f"Failed to parse {yaml_file}: {e.message} {e.errors}")

        return drafts

    def rules_to_yaml(
        self,
        rules: Sequence[ClassificationRule],
        processing_order: Optional[Sequence[str]] = None
    ) -> str:
        """
        Convert rules to a YAML document.

        Args:
            rules: Rules to convert
            processing_order: Optional order written alongside the rules

        Returns:
            YAML string
        """
        document: Dict[str, Any] = {}
        if processing_order:
            document["processing_order"] = list(processing_order)

        entries = []
        for rule in rules:
            rule_dict = rule.to_dict()
            entries.append({field: rule_dict[field] for field in ("id",) + RULE_FIELDS})
        document["rules"] = entries

        return yaml.safe_dump(document, default_flow_style=False, sort_keys=False)

    def save_rules_to_file(
        self,
        rules: Sequence[ClassificationRule],
        file_path: str,
        processing_order: Optional[Sequence[str]] = None
    ) -> None:
        """
        Save rules to a YAML file.

        Args:
            rules: Rules to save
            file_path: Output file path
            processing_order: Optional order written alongside the rules
        """
        yaml_content = self.rules_to_yaml(rules, processing_order)

        with open(file_path, 'w') as f:
            f.write(yaml_content)
