from .comm import Communicator, SerialCommunicator, MPICommunicator, fold, get_communicator
from .vector import IndexSpace, DistributedVector, BlockVector, Importer, ownership_offsets
from .matrix import DistributedMatrix, DistributedBlockMatrix, EntryRouter, SparsityPattern, VectorPattern

__all__ = ['Communicator', 'SerialCommunicator', 'MPICommunicator', 'fold', 'get_communicator',
           'IndexSpace', 'DistributedVector', 'BlockVector', 'Importer', 'ownership_offsets',
           'DistributedMatrix', 'DistributedBlockMatrix', 'EntryRouter', 'SparsityPattern', 'VectorPattern']
