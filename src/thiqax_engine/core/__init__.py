"""Engine models, errors and the application engine facade."""
