from fastapi import Request

from tripgen.services.run_registry import PlanRunRegistry


def get_run_registry(request: Request) -> PlanRunRegistry:
    """
    Dependency injection for the PlanRunRegistry.
    Pulls the singleton instance from the app state (initialized in lifespan).
    """
    return request.app.state.run_registry
