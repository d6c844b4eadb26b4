from __future__ import annotations

from typing import Final

# Settings keys
KEY_ALLOW_GAP_CLOSING: Final = "allow_gap_closing"
KEY_GAP_CLOSING_MAX_DISTANCE: Final = "gap_closing_max_distance"
KEY_GAP_CLOSING_MAX_FRAME_GAP: Final = "gap_closing_max_frame_gap"
KEY_GAP_CLOSING_FEATURE_PENALTIES: Final = "gap_closing_feature_penalties"
KEY_ALLOW_TRACK_SPLITTING: Final = "allow_track_splitting"
KEY_SPLITTING_MAX_DISTANCE: Final = "splitting_max_distance"
KEY_SPLITTING_FEATURE_PENALTIES: Final = "splitting_feature_penalties"
KEY_ALLOW_TRACK_MERGING: Final = "allow_track_merging"
KEY_MERGING_MAX_DISTANCE: Final = "merging_max_distance"
KEY_MERGING_FEATURE_PENALTIES: Final = "merging_feature_penalties"
KEY_ALTERNATIVE_LINKING_COST_FACTOR: Final = "alternative_linking_cost_factor"
KEY_CUTOFF_PERCENTILE: Final = "cutoff_percentile"
KEY_BLOCKING_VALUE: Final = "blocking_value"

# Candidate batch fields
KEY_POSITION: Final = "position"
KEY_FRAME: Final = "frame"
KEY_FEATURES: Final = "features"
KEY_INDEX: Final = "_index"
