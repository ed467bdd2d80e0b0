"""pynsfem: steady incompressible Navier–Stokes on distributed P2/P1 meshes."""

__version__ = "0.1.0"
