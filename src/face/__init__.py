"""Face verification building blocks (provider/extractor/aggregator/comparator/verifier).

Descriptors are flattened detector keypoints, not learned embeddings; enrollment
averages several captures and verification thresholds a distance-based similarity.
"""
