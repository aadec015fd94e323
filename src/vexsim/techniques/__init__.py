"""
techniques: Exploitation primitives and the technique catalog.
"""

from .catalog import (
    CorruptCppObjectVirtualTablePointer,
    CorruptFunctionPointer,
    CorruptStackFramePointer,
    CorruptStackReturnAddress,
    CorruptStackStructuredExceptionHandler,
    ExecuteControlledDataAsCode,
    ExecuteJITCode,
    ExecuteROPPayload,
    ExploitationTechnique,
    HeapSpray,
    LoadNonASLRImage,
    LoadNonASLRNonSafeSEHImage,
    PureROP,
    SimpleTechnique,
    StackLocalVariableInitialization,
    StageViaDisableNX,
    StageViaExecutableHeap,
    StageViaVirtualAllocOrProtect,
    all_techniques,
    get_technique,
)
from .primitives import (
    CodeExecutionPrimitive,
    ExploitationPrimitive,
    ExploitationPrimitiveType,
    InitializeDestinationContentPrimitive,
    InitializeExecutableContentPrimitive,
    InitializeSourceContentPrimitive,
    ReadPrimitive,
    ReadToExecutePrimitive,
    ReadToReadPrimitive,
    ReadToWritePrimitive,
    WritePrimitive,
    WriteToExecutePrimitive,
    WriteToReadPrimitive,
)

__all__ = [
    "CorruptCppObjectVirtualTablePointer",
    "CorruptFunctionPointer",
    "CorruptStackFramePointer",
    "CorruptStackReturnAddress",
    "CorruptStackStructuredExceptionHandler",
    "ExecuteControlledDataAsCode",
    "ExecuteJITCode",
    "ExecuteROPPayload",
    "ExploitationTechnique",
    "HeapSpray",
    "LoadNonASLRImage",
    "LoadNonASLRNonSafeSEHImage",
    "PureROP",
    "SimpleTechnique",
    "StackLocalVariableInitialization",
    "StageViaDisableNX",
    "StageViaExecutableHeap",
    "StageViaVirtualAllocOrProtect",
    "all_techniques",
    "get_technique",
    "CodeExecutionPrimitive",
    "ExploitationPrimitive",
    "ExploitationPrimitiveType",
    "InitializeDestinationContentPrimitive",
    "InitializeExecutableContentPrimitive",
    "InitializeSourceContentPrimitive",
    "ReadPrimitive",
    "ReadToExecutePrimitive",
    "ReadToReadPrimitive",
    "ReadToWritePrimitive",
    "WritePrimitive",
    "WriteToExecutePrimitive",
    "WriteToReadPrimitive",
]
