#!/usr/bin/env python3
"""run_events.py

Run the hydro -> sampler -> afterburner chain for every pending event in an
HDF5 result store, optionally generating the initial conditions first.

Outputs:
- `/{event}/particles/{i}/...` written into the store for events that reached
  the afterburner; failed events are removed from the store.
- Logs + run manifest for auditability.
"""

import sys

from hic_events.cli import main

if __name__ == "__main__":
    sys.exit(main())
