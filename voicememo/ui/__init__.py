"""Console front-end for VoiceMemo."""
