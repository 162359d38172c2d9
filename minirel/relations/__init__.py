# Relation descriptors, accessors and the per-kind runtime objects.
