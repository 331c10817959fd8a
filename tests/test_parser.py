import pytest
import yaml

from classification.models import ClassificationRule, RuleDraft
from classification.parser import RuleParser
from exceptions import ValidationError


@pytest.fixture
def parser():
    return RuleParser(["severity", "category", "impact", "source"])


def test_parse_single_rule_with_short_field_names(parser):
    draft = parser.parse_yaml_dict({
        "rule_type": "Severity",
        "pattern": "tornado|hurricane",
        "value": "Extreme",
        "confidence": 0.95,
        "id": "ignored",
        "notes": "unknown fields are dropped"
    })

    assert draft.rule_type == "severity"
    assert draft.condition_pattern == "tornado|hurricane"
    assert draft.classification_value == "Extreme"
    assert draft.confidence_score == 0.95
    assert draft.priority is None


def test_parse_document_shapes(parser):
    rule = {"rule_type": "category", "pattern": "flood", "value": "Weather"}

    assert len(parser.parse_yaml_document(rule)) == 1
    assert len(parser.parse_yaml_document([rule, rule])) == 2
    assert len(parser.parse_yaml_document({"rules": [rule]})) == 1


def test_rules_must_be_a_list(parser):
    with pytest.raises(ValidationError):
        parser.parse_yaml_document({"rules": "flood"})


def test_invalid_rule_reports_fields(parser):
    with pytest.raises(ValidationError) as exc_info:
        parser.parse_yaml_document([
            {"rule_type": "severity", "pattern": "ok", "value": "Ok"},
            {"rule_type": "severity", "confidence": 2}
        ])

    fields = {e["field"] for e in exc_info.value.errors}
    assert {"condition_pattern", "classification_value", "confidence_score"} <= fields
    assert exc_info.value.context["index"] == 1


def test_processing_order_is_read(parser):
    assert parser.parse_processing_order({"processing_order": ["Impact", "severity"]}) == ["impact", "severity"]
    assert parser.parse_processing_order({"rules": []}) is None
    assert parser.parse_processing_order([]) is None


def test_scalar_processing_order_is_rejected(parser):
    with pytest.raises(ValidationError) as exc_info:
        parser.parse_processing_order({"processing_order": "severity"})
    assert exc_info.value.errors == [{"field": "processing_order", "message": "must be a list"}]


@pytest.mark.parametrize("content, message", [
    ("rules: [unclosed", "Invalid YAML"),
    ("", "Empty YAML"),
])
def test_load_document_errors(parser, tmp_path, content, message):
    path = tmp_path / "rules.yaml"
    path.write_text(content)
    with pytest.raises(ValidationError) as exc_info:
        parser.load_document(str(path))
    assert message in exc_info.value.message


def test_missing_file(parser, tmp_path):
    with pytest.raises(ValidationError):
        parser.parse_yaml_file(str(tmp_path / "missing.yaml"))


def test_validate_rule_errors_and_warnings(parser, compiler):
    bad = RuleDraft(rule_type="weather", condition_pattern="(unclosed", classification_value="X")
    result = parser.validate_rule(bad, compiler)
    assert result.valid is False
    assert [e["field"] for e in result.errors] == ["rule_type", "condition_pattern"]

    loose = RuleDraft(rule_type="severity", condition_pattern="a*", classification_value="X", confidence_score=0.3)
    result = parser.validate_rule(loose, compiler)
    assert result.valid is True
    assert len(result.warnings) == 2


def test_parse_directory_skips_broken_files(parser, tmp_path):
    (tmp_path / "a.yaml").write_text(yaml.safe_dump([{"rule_type": "severity", "pattern": "a", "value": "A"}]))
    (tmp_path / "b.yml").write_text("rules: [unclosed")
    (tmp_path / "c.yaml").write_text(yaml.safe_dump({"rule_type": "impact", "pattern": "c", "value": "C"}))

    drafts = parser.parse_multiple_files(str(tmp_path))

    assert [d.condition_pattern for d in drafts] == ["a", "c"]


def test_rules_to_yaml_round_trip(parser):
    rule = ClassificationRule(
        id="r1",
        rule_type="severity",
        condition_pattern="severe",
        classification_value="Severe",
        confidence_score=0.8,
        priority=7,
        source_types=["Weather"]
    )

    document = yaml.safe_load(parser.rules_to_yaml([rule], processing_order=["severity"]))

    assert document["processing_order"] == ["severity"]
    assert document["rules"][0]["id"] == "r1"
    assert document["rules"][0]["source_types"] == ["weather"]

    draft = parser.parse_yaml_document(document)[0]
    assert draft.priority == 7
    assert draft.confidence_score == 0.8
