# minikernel

`minikernel` models the storage and file layers of a small Unix-like teaching
kernel in plain Python. It works on disk images laid out as a boot block, a
superblock (magic `0x10203040`), a redo log, inode blocks, a free-block bitmap
and data blocks, each block 1024 bytes long, all held in memory.

It is meant for studying how a simple file system behaves, for inspecting or
changing such disk images, and for experimenting with crash-safe updates.

## Modules

| Module | Contents |
| --- | --- |
| `minikernel.layout` | System limits and on-disk structures: `Superblock`, `DiskInode`, `DirEntry` (each with `from_bytes` / `to_bytes`), `InodeType`, and the helpers `iblock`, `bblock`, `namecmp`. |
| `minikernel.kprintf` | `kformat`, kernel-style formatting (`%d %u %x` with `l`/`ll`, `%p`, `%s`, `%%`), and `panic`, which raises `KernelPanic`. |
| `minikernel.locks` | `SpinLock` and `SleepLock` built on threads, both usable as context managers. |
| `minikernel.pages` | `PageAllocator` for 4096-byte pages of a simulated memory range, and the page-table helpers `pg_round_up`, `pg_round_down`, `pa_to_pte`, `pte_to_pa`, `pte_flags`, `px`. |
| `minikernel.disk` | `BlockDevice`: an in-memory disk made with `from_file` or `blank`, read and written by block, and written back with `save`. |
| `minikernel.bio` | `BufferCache` of `Buf` blocks, recycling the least recently used; `block()` holds a buffer for a `with` block. |
| `minikernel.log` | `Log`, the redo log; `transaction()` runs a `with` block as one operation. |
| `minikernel.fs` | `FileSystem`, `Inode`, `Stat` and `skip_elem`: block and inode allocation, reading, writing, truncation, directories and path lookup. |
| `minikernel.pipe` | `Pipe`, a 512-byte bounded byte channel. |
| `minikernel.file` | `FileTable`, `File`, `FileType`: open files over inodes, devices and pipes, with `register_device` for device drivers. |
| `minikernel.console` | `Console`: line-edited input (backspace, delete, Ctrl-U kill line, Ctrl-D end of file) fed through `interrupt`, and output through a callable. |
| `minikernel.sysfile` | `Process` with `open`, `read`, `write`, `close`, `dup`, `fstat`, `link`, `unlink`, `mkdir`, `mknod`, `chdir`, `pipe`; `OpenFlag` and `SyscallError`. |
| `minikernel.elf` | `ElfHeader`, `ProgramHeader`, `flags_to_perm`, `load_segments`, `layout_arguments` and `ExecError`. |
| `minikernel.kernel` | `Kernel`, which wires the console, cache, file system and file table together over one disk. |

## Using it

Open an existing file-system image and work through a process:

```python
from minikernel.kernel import Kernel
from minikernel.sysfile import OpenFlag, SyscallError

kernel = Kernel.from_image("fs.img")   # prints a boot banner to stdout
proc = kernel.process()                # current directory is "/"

proc.mkdir("/notes")
proc.chdir("/notes")

fd = proc.open("todo.txt", OpenFlag.CREATE | OpenFlag.RDWR)
proc.write(fd, b"buy milk\n")
proc.close(fd)

reader, writer = proc.pipe()
proc.write(writer, b"hello")
print(proc.read(reader, 5))            # b'hello'

try:
    proc.unlink("/does-not-exist")
except SyscallError as exc:
    print(exc.errno)

kernel.device.save("fs.img")           # write the changed image back
```

Failed system calls raise `SyscallError`, an `OSError` whose `errno` says why.
Conditions that would halt a kernel (a corrupt image, an inconsistent
reference count, too large a transaction) raise `KernelPanic`.

Every file system change goes through the log: changed blocks are copied to
the log area, the log header is written as the commit point, and then the
blocks are copied to their home locations. Opening an image with a committed
but uninstalled log replays it.

The console is registered as major device 1. After
`proc.mknod("/console", 1, 0)`, a descriptor opened on that path reads lines
typed through `kernel.console.interrupt(...)` and writes to standard output.

## Limits

1024-byte blocks; 12 direct and 256 indirect block addresses per inode (at
most 268 blocks per file); 14-byte names; 128-byte paths; a 30-block log;
30 cached buffers; 50 in-memory inodes; 100 open files in all and 16 per
process.

## What it does not do

- It does not create file systems: it needs an already formatted image, and a
  blank `BlockDevice` is rejected as an invalid file system.
- It runs no programs. There are no processes beyond the file-descriptor and
  current-directory state of `Process`, and no scheduling, `fork`, `exec`,
  `wait` or `kill`; `minikernel.elf` only parses executables and lays out their
  memory and argument stack.
- It has no command-line tool and no terminal attachment; console input is
  delivered by calling `Console.interrupt`.
- Changes stay in memory until `BlockDevice.save` writes the image out.

## Running the tests

Install the `test` extra and run `pytest` from the project directory.