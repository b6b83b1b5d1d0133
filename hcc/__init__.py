"""HCC: a four-stage hierarchical coherence pipeline for long documents.

Stage 1 reconstructs the document, stage 2 raises objections to it, stage 3
answers them, and stage 4 rewrites the reconstruction with the answers
integrated. Within a stage, coherence is kept vertically through skeletons
and deltas; across stages it is checked horizontally after stage 4.
"""

__version__ = "0.1.0"
