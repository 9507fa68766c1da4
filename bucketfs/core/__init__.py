"""Core building blocks shared by every bucketfs component."""
