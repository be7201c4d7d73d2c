"""
Result artifact layout.

An execution leaves two files in its output directory: the proof (or the
failure record) as deterministic JSON, and ``computed.json`` pointing at it,
which the job framework picks up as the deterministic output.
"""
import json
import logging
import os
from typing import Union

from pydantic import ValidationError as PydanticValidationError

from .exceptions import HyperSecretError
from .models import ExecutionFailure, ExecutionProof

logger = logging.getLogger(__name__)

RESULT_FILE = "result.json"
FAILURE_FILE = "error.json"
COMPUTED_FILE = "computed.json"
DEFAULT_OUTPUT_DIR = "/tmp/iexec_out"


def _write_computed(output_dir: str, target: str) -> None:
    with open(os.path.join(output_dir, COMPUTED_FILE), "w", encoding="utf-8") as f:
        json.dump({"deterministic-output-path": target}, f)


def write_result(proof: ExecutionProof, output_dir: str = DEFAULT_OUTPUT_DIR) -> str:
    """
    Write the execution proof and its metadata file.

    Returns:
        Path of the proof file
    """
    os.makedirs(output_dir, exist_ok=True)
    path = os.path.join(output_dir, RESULT_FILE)
    with open(path, "w", encoding="utf-8") as f:
        f.write(proof.to_json())
    _write_computed(output_dir, path)
    logger.info("Execution proof written to %s", path)
    return path


def write_failure(failure: ExecutionFailure, output_dir: str = DEFAULT_OUTPUT_DIR) -> str:
    """
    Write a terminal failure record and point the metadata file at it.

    Returns:
        Path of the failure file
    """
    os.makedirs(output_dir, exist_ok=True)
    path = os.path.join(output_dir, FAILURE_FILE)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(failure.to_dict(), f, indent=2, sort_keys=True)
    _write_computed(output_dir, path)
    logger.info("Failure record written to %s", path)
    return path


def load_proof(data: Union[bytes, str]) -> ExecutionProof:
    """
    Parse proof bytes as produced by ``write_result``.

    Raises:
        HyperSecretError: If the data is not a valid proof
    """
    try:
        return ExecutionProof.model_validate_json(data)
    except PydanticValidationError as e:
        raise HyperSecretError(f"Invalid execution proof: {e.error_count()} error(s)") from e
