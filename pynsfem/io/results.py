"""Result files: output directories and the force CSV."""
import csv
from pathlib import Path
from typing import Optional, Sequence

from pynsfem.parallel.comm import Communicator


def output_directory(root, stage: str, reynolds: float, comm: Optional[Communicator] = None) -> Path:
    """``<root>/<stage>/outputs_reynolds_<Re>``, created by rank 0."""
    path = Path(root) / stage / f"outputs_reynolds_{reynolds:g}"
    if comm is None or comm.is_root:
        path.mkdir(parents=True, exist_ok=True)
    if comm is not None:
        comm.barrier()
    return path


def append_csv_row(path, row: Sequence[float], header: Optional[Sequence[str]] = ("drag", "lift", "p_diff")):
    """Append one row; the header is written when the file is new."""
    path = Path(path)
    new = not path.exists() or path.stat().st_size == 0
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", newline="") as f:
        writer = csv.writer(f)
        if new and header is not None:
            writer.writerow(header)
        writer.writerow([f"{float(v):.12g}" for v in row])
    return path
