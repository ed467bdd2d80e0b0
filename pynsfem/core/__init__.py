from .mesh import Mesh
from .topology import Edge
from .dofhandler import DofHandler, partition_cells
from .bcs import BoundaryCondition
__all__ = ['Mesh', 'Edge', 'DofHandler', 'partition_cells', 'BoundaryCondition']
