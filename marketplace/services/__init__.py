"""Engine components: category tree, geo matching, application workflow, order lifecycle and catalog."""
