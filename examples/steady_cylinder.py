"""
Steady flow around a cylinder (Schäfer–Turek 2D-1, Re = 20).

    python examples/steady_cylinder.py --config examples/config_re20.json
    mpiexec -n 4 python examples/steady_cylinder.py --mpi
"""
import argparse
import logging
import time

from pynsfem.config import SimulationConfig
from pynsfem.parallel.comm import get_communicator
from pynsfem.solvers.steady import SteadyNavierStokes

parser = argparse.ArgumentParser(description="Steady Navier-Stokes flow around a cylinder")
parser.add_argument("--config", help="JSON configuration file")
parser.add_argument("--mpi", action="store_true", help="run on MPI.COMM_WORLD (needs mpi4py)")
parser.add_argument("--h", type=float, help="background mesh size")
parser.add_argument("--reynolds", type=float, help="override the Reynolds number")
parser.add_argument("--preconditioner", choices=("diagonal", "triangular"),
                    help="block preconditioner for the Stokes and Oseen solves")
parser.add_argument("--plot", action="store_true", help="save a velocity plot next to the results")
args = parser.parse_args()

config = SimulationConfig.from_json(args.config) if args.config else SimulationConfig()
if args.mpi:
    config.communicator = "mpi"
if args.h is not None:
    config.mesh.h = args.h
if args.reynolds is not None:
    config.reynolds = args.reynolds
if args.preconditioner is not None:
    config.stokes.preconditioner = args.preconditioner
    config.picard.preconditioner = args.preconditioner

comm = get_communicator(config.communicator)
logging.basicConfig(level=logging.INFO if comm.is_root else logging.WARNING,
                    format="%(asctime)s %(name)s %(levelname)s: %(message)s")

if comm.is_root:
    print("--- Steady cylinder benchmark ---")
    print(f"Reynolds number (Re): {config.reynolds:.2f}, viscosity: {config.viscosity:.3e}, ranks: {comm.size}")

t0 = time.perf_counter()
problem = SteadyNavierStokes(config, comm)
result = problem.run()
t1 = time.perf_counter()

if args.plot:
    import matplotlib.pyplot as plt
    from pynsfem.io.visualization import plot_solution
    ax = plot_solution(problem.dof_handler, result.solution, "velocity", title=f"|u|, Re = {config.reynolds:g}")
    if ax is not None:
        ax.figure.savefig(result.output_dirs["IncrementalStokes"] / "velocity.png", dpi=150)
        plt.close(ax.figure)

if comm.is_root:
    ref = config.benchmark
    f = result.forces
    print(f"Picard status: {result.state.status.value} after {result.state.iteration} iteration(s)")
    print(f"{'':8s}{'computed':>16s}{'reference':>16s}{'rel. error':>12s}")
    for name, value, target in (("c_D", f.drag, ref.reference_drag),
                                ("c_L", f.lift, ref.reference_lift),
                                ("dp", f.pressure_difference, ref.reference_pressure_difference)):
        print(f"{name:8s}{value:16.8f}{target:16.8f}{abs(value - target) / abs(target):12.2e}")
    print(f"Total time: {t1 - t0:.2f} seconds")
