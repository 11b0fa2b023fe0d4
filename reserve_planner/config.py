# config.py
import os

# Solver defaults (relative MIP gap, backend name understood by pywraplp.Solver.CreateSolver)
SOLVER_BACKEND = os.environ.get("RESERVE_PLANNER_SOLVER", "SCIP")
SOLVER_GAP = 0.1
SOLVER_THREADS = 1

# Exposed (outer) boundary is scaled by this when computing perimeter penalties
EDGE_FACTOR = 0.5

# Marxan pu.dat status codes
STATUS_LOCKED_IN = 2
STATUS_LOCKED_OUT = 3

SEED = 500

# Selection values above this count as selected
SELECTED_TOL = 0.5

API_HOST = "0.0.0.0"
API_PORT = int(os.environ.get("RESERVE_PLANNER_PORT", "8081"))
HTTP_TIMEOUT = 10
