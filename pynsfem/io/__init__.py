from .checkpoint import load_block_vector, save_block_vector
from .results import append_csv_row, output_directory
from .vtk import export_vtk, write_result

__all__ = ["export_vtk", "write_result", "save_block_vector", "load_block_vector",
           "append_csv_row", "output_directory"]
