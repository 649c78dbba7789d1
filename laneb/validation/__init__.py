"""One validator per governed entity, each returning `Ok(normalized)` or `Err(errors)`."""

from laneb.validation.approval import validate_approval, validate_qa_approval
from laneb.validation.bundle import bundle_pins, validate_bundle
from laneb.validation.patch_plan import edit_paths, validate_patch_plan
from laneb.validation.proposal import validate_proposal
from laneb.validation.qa_plan import validate_qa_plan
from laneb.validation.result import Err, Ok, Validated

__all__ = [
    "Err",
    "Ok",
    "Validated",
    "bundle_pins",
    "edit_paths",
    "validate_approval",
    "validate_bundle",
    "validate_patch_plan",
    "validate_proposal",
    "validate_qa_approval",
    "validate_qa_plan",
]
