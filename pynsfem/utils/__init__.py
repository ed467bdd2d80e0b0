from .gmsh_loader import load_gmsh
from .meshgen import channel_with_cylinder, structured_triangles

__all__ = ["channel_with_cylinder", "structured_triangles", "load_gmsh"]
