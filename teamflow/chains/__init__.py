from .turn_graph import TurnState, build_turn_graph, run_team_turn

__all__ = ["TurnState", "build_turn_graph", "run_team_turn"]
