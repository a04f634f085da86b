"""Job model and orchestration.

- schemas: Job rows and the plan/execute payload contracts
- job_manager: Job lifecycle in the database
- planners: Fan a complex stage out into execute jobs
- processor: Plan → execute transitions and job dispatch
- task_isolator: Resolve an execute job's source context before it runs
- submission: Create the plan jobs for a stage
"""
