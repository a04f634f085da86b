"""Dialectic Worker - multi-stage AI contribution pipeline.

Plans, executes and chains the jobs behind a structured multi-model
reasoning process (thesis -> antithesis -> synthesis -> ...):
- Job planners decide how many jobs a stage needs and their naming context
- The job processor turns plan jobs into execute jobs
- The task isolator resolves anchor/paired documents before execution
- The execute engine calls provider adapters with a bounded continuation loop
- Canonical path params give every output a collision-free storage path
"""

__version__ = "0.1.0"
