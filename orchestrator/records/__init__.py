from .fields import (
    FieldIssue,
    available_targets,
    create_field,
    create_fields_from_headers,
    field_by_name,
    field_by_target,
    is_target_mapped,
    map_field,
    mapped_fields,
    mapping_stats,
    toggle_field_mapping,
    unmap_field,
    unmapped_fields,
    update_field_in_array,
    validate_field_set,
)
from .models import (
    FieldMapping,
    RecordingSession,
    ReplaySession,
    RunRecord,
    Step,
    StepResult,
    describe_step,
    utcnow,
)

__all__ = [
    "FieldIssue",
    "FieldMapping",
    "RecordingSession",
    "ReplaySession",
    "RunRecord",
    "Step",
    "StepResult",
    "available_targets",
    "create_field",
    "create_fields_from_headers",
    "describe_step",
    "field_by_name",
    "field_by_target",
    "is_target_mapped",
    "map_field",
    "mapped_fields",
    "mapping_stats",
    "toggle_field_mapping",
    "unmap_field",
    "unmapped_fields",
    "update_field_in_array",
    "utcnow",
    "validate_field_set",
]
