"""Beans describing the Python runtime this process is running on."""

import gc
import os
import platform
import sys
import threading
import time

import psutil

from sakai_status.mbeans import BeanRegistry, ManagedBean, ObjectName, attribute, operation

PLATFORM_DOMAIN = "python.lang"


class RuntimeBean(ManagedBean):
    """Interpreter identity and uptime."""

    description = "Information about the running interpreter"

    def __init__(self) -> None:
        self._process = psutil.Process()

    @attribute("str", "Implementation name")
    def Name(self) -> str:
        return platform.python_implementation()

    @attribute("str", "Interpreter version")
    def Version(self) -> str:
        return platform.python_version()

    @attribute("str", "Path of the interpreter executable")
    def Executable(self) -> str:
        return sys.executable

    @attribute("int", "Process id")
    def Pid(self) -> int:
        return self._process.pid

    @attribute("float", "Process start time (epoch seconds)")
    def StartTime(self) -> float:
        return self._process.create_time()

    @attribute("float", "Seconds since the process started")
    def Uptime(self) -> float:
        return time.time() - self._process.create_time()

    @attribute("list", "Command line arguments")
    def InputArguments(self) -> list[str]:
        return list(sys.argv)


class MemoryBean(ManagedBean):
    """Process and system memory usage."""

    description = "Memory usage of this process and the host"

    def __init__(self) -> None:
        self._process = psutil.Process()

    @attribute("int", "Resident set size in bytes")
    def Rss(self) -> int:
        return self._process.memory_info().rss

    @attribute("int", "Virtual memory size in bytes")
    def Vms(self) -> int:
        return self._process.memory_info().vms

    @attribute("int", "Memory available to new processes in bytes")
    def Available(self) -> int:
        return psutil.virtual_memory().available

    @attribute("int", "Total physical memory in bytes")
    def Total(self) -> int:
        return psutil.virtual_memory().total

    @attribute("float", "Share of physical memory used by this process")
    def Percent(self) -> float:
        return self._process.memory_percent()

    @operation("Run a full garbage collection")
    def collect(self) -> int:
        return gc.collect()


class ThreadingBean(ManagedBean):
    """Thread counts as seen by the interpreter and the OS."""

    description = "Thread usage of this process"

    def __init__(self) -> None:
        self._process = psutil.Process()

    @attribute("int", "Live Python threads")
    def ThreadCount(self) -> int:
        return threading.active_count()

    @attribute("int", "Live daemon threads")
    def DaemonThreadCount(self) -> int:
        return sum(1 for t in threading.enumerate() if t.daemon)

    @attribute("int", "OS threads of this process")
    def NativeThreadCount(self) -> int:
        return self._process.num_threads()

    @attribute("float", "Thread switch interval in seconds")
    def SwitchInterval(self) -> float:
        return sys.getswitchinterval()


class OperatingSystemBean(ManagedBean):
    """Host operating system."""

    description = "Host operating system"

    def __init__(self) -> None:
        self._process = psutil.Process()

    @attribute("str", "Operating system name")
    def Name(self) -> str:
        return platform.system()

    @attribute("str", "Operating system release")
    def Version(self) -> str:
        return platform.release()

    @attribute("str", "Machine architecture")
    def Arch(self) -> str:
        return platform.machine()

    @attribute("int", "Logical CPUs")
    def AvailableProcessors(self) -> int:
        return psutil.cpu_count() or 0

    @attribute("float", "One minute load average")
    def SystemLoadAverage(self) -> float:
        return psutil.getloadavg()[0]

    @attribute("int", "Open file descriptors (handles on Windows)")
    def OpenFileDescriptorCount(self) -> int:
        if hasattr(self._process, "num_fds"):
            return self._process.num_fds()
        return self._process.num_handles()


class GarbageCollectorBean(ManagedBean):
    """Counters of one garbage collector generation."""

    description = "Cyclic garbage collector generation"

    def __init__(self, generation: int) -> None:
        self._generation = generation

    def _stats(self) -> dict[str, int]:
        return gc.get_stats()[self._generation]

    @attribute("int", "Collections run for this generation")
    def CollectionCount(self) -> int:
        return self._stats()["collections"]

    @attribute("int", "Objects collected")
    def Collected(self) -> int:
        return self._stats()["collected"]

    @attribute("int", "Uncollectable objects found")
    def Uncollectable(self) -> int:
        return self._stats()["uncollectable"]

    @attribute("int", "Allocation threshold")
    def Threshold(self) -> int:
        return gc.get_threshold()[self._generation]

    @attribute("int", "Objects currently tracked in this generation")
    def Count(self) -> int:
        return gc.get_count()[self._generation]


def register_platform_beans(registry: BeanRegistry) -> list[ObjectName]:
    """Register the runtime beans and return their names."""
    beans = {
        f"{PLATFORM_DOMAIN}:type=Runtime": RuntimeBean(),
        f"{PLATFORM_DOMAIN}:type=Memory": MemoryBean(),
        f"{PLATFORM_DOMAIN}:type=Threading": ThreadingBean(),
        f"{PLATFORM_DOMAIN}:type=OperatingSystem": OperatingSystemBean(),
    }
    for generation in range(min(len(gc.get_stats()), len(gc.get_threshold()))):
        name = f"{PLATFORM_DOMAIN}:type=GarbageCollector,name=generation{generation}"
        beans[name] = GarbageCollectorBean(generation)
    return [registry.register(name, bean) for name, bean in beans.items()]


def system_properties() -> dict[str, str]:
    """Interpreter and process facts as flat properties. The environment is never included."""
    return {
        "python.version": platform.python_version(),
        "python.implementation": platform.python_implementation(),
        "python.executable": sys.executable,
        "python.path": os.pathsep.join(sys.path),
        "python.prefix": sys.prefix,
        "os.name": platform.system(),
        "os.version": platform.release(),
        "os.arch": platform.machine(),
        "file.encoding": sys.getfilesystemencoding(),
        "line.separator": repr(os.linesep),
        "user.dir": os.getcwd(),
        "user.home": os.path.expanduser("~"),
        "pid": str(os.getpid()),
    }
