from terminal_fleet.orchestration.driver import OrchestrationDriver, RunReport

__all__ = ["OrchestrationDriver", "RunReport"]
