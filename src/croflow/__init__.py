"""
croflow - pluggable module orchestration for conversion-rate analysis.

Subpackages:
- croflow.core: errors, results, cache, logging, settings
- croflow.execution: retry policies
- croflow.framework: module contract, executor and registry
- croflow.llm: provider-agnostic language-model execution
- croflow.analyzers: the four analysis stages and their records
- croflow.pipeline: context, artifact store and the end-to-end pipeline
"""

__version__ = "0.1.0"

from croflow.core import *  # noqa
