"""Transfer engine core: data model, query builders, coercion, orchestration."""
