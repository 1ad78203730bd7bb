"""Activities and in-process services used by the pipeline workflows."""
