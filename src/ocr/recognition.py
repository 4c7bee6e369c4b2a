"""
Recognition decoding: CTC greedy decode of the PaddleOCR recognizer output.
"""
from pathlib import Path
from typing import List, Sequence, Union

import numpy as np

from src.processing.postprocessing import normalize_special_spaces
from utils.models import DecodeResult

BLANK_TOKEN = "blank"


def load_dictionary(path: Union[str, Path]) -> List[str]:
    """
    Load a one-symbol-per-line character dictionary.

    A trailing empty line is dropped and ``"blank"`` is prepended so that
    index 0 is the CTC blank class.

    Args:
        path: Dictionary file

    Returns:
        Symbol list aligned with the model's output classes
    """
    text = Path(path).read_text(encoding="utf-8")
    lines = text.split("\n")
    lines = [line[:-1] if line.endswith("\r") else line for line in lines]
    if lines and lines[-1] == "":
        lines.pop()
    return [BLANK_TOKEN] + lines


def _step_probabilities(matrix: np.ndarray, max_values: np.ndarray) -> np.ndarray:
    """
    Per-step probability of the arg-max class.

    Log-probability outputs (the exported PaddleOCR recognizer) give
    ``exp(max)``. A matrix whose rows are non-negative and sum to ~1 is
    already softmaxed and its max is used directly; applying ``exp`` there
    would inflate confidences.
    """
    row_sums = matrix.sum(axis=1)
    if matrix.min() >= 0.0 and np.allclose(row_sums, 1.0, atol=1e-3):
        return max_values
    return np.exp(max_values)


def decode_ctc(output, dictionary: Sequence[str]) -> DecodeResult:
    """
    Greedy CTC decode.

    A step emits its arg-max symbol when the class is not blank and differs
    from the previous step's class. The last class is PaddleOCR's space
    class; classes beyond the dictionary emit nothing.

    Args:
        output: Recognizer output, [seq_len, vocab] or [1, seq_len, vocab]
        dictionary: Symbols with "blank" at index 0

    Returns:
        DecodeResult with untrimmed text and confidence in [0, 100]
    """
    matrix = np.asarray(output, dtype=np.float32)
    while matrix.ndim > 2:
        matrix = matrix[0]
    if matrix.ndim != 2 or matrix.shape[0] == 0 or matrix.shape[1] == 0:
        return DecodeResult(text="", confidence=0.0)

    vocab_size = matrix.shape[1]
    indices = matrix.argmax(axis=1)
    max_values = matrix[np.arange(matrix.shape[0]), indices]
    probabilities = _step_probabilities(matrix, max_values)

    chars: List[str] = []
    total = 0.0
    prev_idx = 0
    for idx, prob in zip(indices.tolist(), probabilities.tolist()):
        if idx != 0 and idx != prev_idx:
            if idx == vocab_size - 1:
                chars.append(" ")
                total += prob
            elif idx < len(dictionary):
                chars.append(dictionary[idx])
                total += prob
        prev_idx = idx

    if not chars:
        return DecodeResult(text="", confidence=0.0)

    mean = total / len(chars)
    if np.isnan(mean):
        mean = 0.0
    # exp() of raw logits can exceed 1; the cap keeps it a percentage
    confidence = float(max(0, min(100, round(min(mean, 1.0) * 100))))
    return DecodeResult(text=normalize_special_spaces("".join(chars)), confidence=confidence)
