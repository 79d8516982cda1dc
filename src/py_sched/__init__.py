"""PySched: a discrete-time simulator of single-CPU process scheduling.

A fixed set of scripted processes compete for one CPU and for a table
of mutually exclusive resources.  The engine advances a global clock one
tick at a time and asks a pluggable scheduling policy which process
runs next.  Eight policies ship with the simulator (FIFO, SJF, SRTF,
Round-Robin, Priority, Priority with aging, Priority Ceiling Protocol,
Priority Inheritance Protocol), each paired with the resource protocol
it needs to stay correct under contention.
"""

__version__ = "0.1.0"
