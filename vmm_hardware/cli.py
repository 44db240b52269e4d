"""
命令行接口模块

提供了 vmm-hardware 的命令行界面，支持：
- 查看域 XML 中的设备列表
- 基于域能力校验设备
- 检查 XML 往返编解码
- 使用外部编辑器覆盖编辑设备或整个域
- 通过 libvirt 获取域能力和定义域
"""

import asyncio
import os
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from typing_extensions import Annotated

from .capabilities import parse_domain_capabilities
from .codec import canonical_equal, decode_domain, encode_domain
from .config import Config
from .editor import EditState
from .exceptions import (
    ConfigurationError,
    MalformedXmlError,
    UnsupportedByCapabilitiesError,
    VmmHardwareError,
)
from .logging import configure_logging, get_logger
from .session import HardwareSession

# 创建 Typer 应用实例
app = typer.Typer(
    name="vmm-hardware",
    help="🖥️  VMM Hardware - libvirt 虚拟机硬件设备编辑工具",
    rich_markup_mode="rich",
    no_args_is_help=True,
)

# Rich Console 用于美化输出
console = Console()

ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config", "-c",
        help="配置文件路径 (YAML 格式)",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
]

XmlArgument = Annotated[
    Path,
    typer.Argument(
        help="域 XML 文件路径",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
]

UriOption = Annotated[
    Optional[str],
    typer.Option("--uri", help="Libvirt 连接 URI (例如: qemu:///system)"),
]


def version_callback(value: bool):
    """显示版本信息并退出"""
    if value:
        from . import __version__
        console.print(f"[bold green]vmm-hardware[/bold green] version [bold blue]{__version__}[/bold blue]")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version", "-V",
            callback=version_callback,
            help="显示版本信息并退出"
        )
    ] = None,
):
    """
    🖥️  VMM Hardware - libvirt 虚拟机硬件设备编辑工具

    无损读写域 XML，按域能力校验设备，并支持外部编辑器覆盖编辑。
    """
    pass


def _setup(config_file: Optional[Path], uri: Optional[str] = None) -> Config:
    """加载配置并初始化日志"""
    try:
        app_config = Config.load(str(config_file) if config_file else None)
    except ConfigurationError as e:
        console.print(f"[red]❌ 配置错误: {e}[/red]")
        raise typer.Exit(code=1)
    if uri:
        app_config.libvirt.uri = uri
    configure_logging(app_config)
    return app_config


def _read_session(path: Path, app_config: Config) -> HardwareSession:
    return HardwareSession.from_xml(path.read_bytes(), config=app_config)


def _fail(message: str, error: Exception) -> None:
    """记录错误并以非零状态退出"""
    get_logger(__name__).error("{}: {}", message, error)
    console.print(f"[red]❌ {message}: {error}[/red]")
    raise typer.Exit(code=1)


def _libvirt_adapter():
    """按需导入 libvirt 适配器（libvirt-python 为可选依赖）"""
    try:
        from .libvirt_client import LibvirtBackend, LibvirtClient
    except ImportError as e:
        console.print("[red]❌ 需要安装 libvirt-python: pip install 'vmm-hardware[libvirt]'[/red]")
        raise typer.Exit(code=1) from e
    return LibvirtBackend, LibvirtClient


@app.command()
def show(
    xml_file: XmlArgument,
    config: ConfigOption = None,
):
    """
    📋 显示设备列表

    解析域 XML 并列出所有设备及其未识别内容数量。
    """
    app_config = _setup(config)
    try:
        session = _read_session(xml_file, app_config)
    except VmmHardwareError as e:
        _fail("解析失败", e)

    document = session.document
    memory_kib = document.memory.to_kib() if document.memory else None
    console.print(Panel.fit(
        f"名称: [bold blue]{document.name or '-'}[/bold blue]\n"
        f"类型: [bold]{document.domain_type or '-'}[/bold]\n"
        f"内存: [bold]{memory_kib if memory_kib is not None else '-'} KiB[/bold]\n"
        f"vCPU: [bold]{document.vcpus or '-'}[/bold]\n"
        f"模拟器: [bold]{document.emulator or '-'}[/bold]",
        title="域信息",
        border_style="green",
    ))

    table = Table(title="🔌 设备", show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right", style="cyan")
    table.add_column("类型", style="green")
    table.add_column("元素", style="white")
    table.add_column("描述", style="white")
    table.add_column("别名", style="yellow")
    table.add_column("未识别", justify="right")

    for index, device in enumerate(session.devices):
        table.add_row(
            str(index),
            device.kind.value,
            device.element_name,
            device.describe(),
            device.alias or "",
            str(len(device.raw_extra)),
        )
    console.print(table)


@app.command()
def validate(
    xml_file: XmlArgument,
    domcaps: Annotated[
        Optional[Path],
        typer.Option(
            "--domcaps", "-d",
            help="域能力 XML 文件 (virsh domcapabilities 输出)",
            exists=True,
            file_okay=True,
            dir_okay=False,
            readable=True,
        )
    ] = None,
    strict: Annotated[
        bool,
        typer.Option("--strict", help="存在违规时以非零状态退出")
    ] = False,
    config: ConfigOption = None,
):
    """
    ✅ 校验设备

    检查必填字段、互斥字段，以及（提供域能力时）字段取值是否受支持。
    """
    app_config = _setup(config)
    try:
        snapshot = parse_domain_capabilities(domcaps.read_bytes()) if domcaps else None
        session = HardwareSession.from_xml(xml_file.read_bytes(), config=app_config, capabilities=snapshot)
    except VmmHardwareError as e:
        _fail("解析失败", e)

    violations = session.validate_all()
    if not violations:
        console.print("[bold green]✅ 未发现违规[/bold green]")
        return

    table = Table(title="⚠️  违规列表", show_header=True, header_style="bold yellow")
    table.add_column("#", justify="right", style="cyan")
    table.add_column("类型", style="green")
    table.add_column("字段", style="white")
    table.add_column("原因", style="yellow")
    table.add_column("说明", style="white")
    for violation in violations:
        table.add_row(
            str(violation.index),
            violation.kind.value,
            violation.field,
            violation.reason.value,
            violation.message,
        )
    console.print(table)

    if strict:
        raise typer.Exit(code=1)


@app.command()
def roundtrip(
    xml_file: XmlArgument,
    config: ConfigOption = None,
):
    """
    🔁 检查往返编解码

    验证 encode(decode(x)) 与原文档规范等价，且再次往返结果不变。
    """
    _setup(config)
    original = xml_file.read_bytes()
    try:
        first = encode_domain(decode_domain(original))
        second = encode_domain(decode_domain(first))
        equivalent = canonical_equal(first, original)
    except VmmHardwareError as e:
        _fail("解析失败", e)

    idempotent = first == second
    table = Table(title="🔁 往返检查", show_header=True, header_style="bold cyan")
    table.add_column("检查项", style="cyan")
    table.add_column("结果", justify="center")
    table.add_row("规范等价", "✅" if equivalent else "❌")
    table.add_row("幂等", "✅" if idempotent else "❌")
    table.add_row("字节一致", "✅" if first.encode("utf-8") == original else "-")
    console.print(table)

    if not (equivalent and idempotent):
        raise typer.Exit(code=1)


@app.command()
def edit(
    xml_file: XmlArgument,
    device: Annotated[
        Optional[int],
        typer.Option("--device", "-n", help="要编辑的设备序号，缺省编辑整个域", min=0)
    ] = None,
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="输出文件路径，缺省覆盖原文件")
    ] = None,
    config: ConfigOption = None,
):
    """
    📝 使用外部编辑器编辑

    依次使用 VISUAL、EDITOR 或平台默认编辑器打开设备或整个域的 XML，
    保存退出后合并回文档。
    """
    app_config = _setup(config)
    try:
        session = _read_session(xml_file, app_config)
        outcome = asyncio.run(_edit_loop(session, device))
    except IndexError as e:
        _fail("设备序号无效", e)
    except VmmHardwareError as e:
        _fail("编辑失败", e)

    if outcome is None or outcome.status is EditState.CANCELLED:
        console.print("[yellow]ℹ️  内容未修改，已取消[/yellow]")
        return

    target = output or xml_file
    target.write_text(session.to_xml(), encoding="utf-8")
    changed = ", ".join(outcome.changed) or "-"
    console.print(f"✅ 已写入 [bold blue]{target}[/bold blue] (变更字段: {changed})")


async def _edit_loop(session: HardwareSession, target: Optional[int]):
    """编辑直到得到结果；XML 格式错误时可在同一缓冲区重新编辑"""
    with session.export_for_edit(target) as buffer:
        while True:
            await session.run_editor(buffer)
            try:
                return session.apply_edit(buffer)
            except MalformedXmlError as e:
                console.print(f"[red]❌ XML 格式错误 (行 {e.line}, 列 {e.column}): {e.message}[/red]")
                if not typer.confirm("重新编辑?", default=True):
                    return None


@app.command()
def capabilities(
    domain: Annotated[str, typer.Argument(help="域名称")],
    uri: UriOption = None,
    config: ConfigOption = None,
):
    """
    🔍 获取域能力

    通过 libvirt 查询指定域可用的设备类型和取值。
    """
    app_config = _setup(config, uri)
    LibvirtBackend, LibvirtClient = _libvirt_adapter()

    async def fetch():
        async with LibvirtClient(app_config) as client:
            return await LibvirtBackend().fetch_capabilities(client, domain)

    try:
        snapshot = asyncio.run(fetch())
    except VmmHardwareError as e:
        _fail("获取域能力失败", e)

    table = Table(
        title=f"🖥️  {snapshot.arch or '-'} / {snapshot.machine or '-'} ({snapshot.domain_type or '-'})",
        show_header=True,
        header_style="bold blue",
    )
    table.add_column("设备", style="cyan", no_wrap=True)
    table.add_column("支持", justify="center")
    table.add_column("取值", style="white")
    for element, capability in sorted(snapshot.devices.items()):
        values = "; ".join(
            f"{name}: {', '.join(items)}" for name, items in capability.raw_enums.items()
        )
        table.add_row(element, "✅" if capability.supported else "❌", values)
    console.print(table)

    if snapshot.features:
        console.print(f"特性: {', '.join(sorted(snapshot.features))}")


@app.command()
def define(
    xml_file: XmlArgument,
    uri: UriOption = None,
    config: ConfigOption = None,
):
    """
    🚀 定义域

    校验后通过 libvirt defineXML 定义（或重新定义）域。
    """
    app_config = _setup(config, uri)
    LibvirtBackend, LibvirtClient = _libvirt_adapter()

    async def save(session: HardwareSession):
        async with LibvirtClient(app_config) as client:
            backend = LibvirtBackend()
            if session.document.name:
                try:
                    await session.refresh_capabilities(backend, client)
                except VmmHardwareError as e:
                    # 新域尚未定义时没有能力可查
                    get_logger(__name__).debug("Capability refresh skipped: {}", e)
            return await session.save(backend, client)

    try:
        session = _read_session(xml_file, app_config)
        result = asyncio.run(save(session))
    except UnsupportedByCapabilitiesError as e:
        for violation in e.violations:
            console.print(f"  [yellow]⚠️  {violation.message}[/yellow]")
        _fail("存在不受支持的设备配置", e)
    except VmmHardwareError as e:
        _fail("定义域失败", e)

    console.print(f"✅ 已定义域 [bold blue]{result.name}[/bold blue] ({result.uuid})")


@app.command()
def info():
    """
    ℹ️  显示系统信息

    显示版本、编辑器设置和依赖库版本。
    """
    import importlib.metadata
    import platform
    from . import __version__

    try:
        app_config = Config.load()
    except ConfigurationError as e:
        console.print(f"[red]❌ 配置错误: {e}[/red]")
        raise typer.Exit(code=1)
    table = Table(title="ℹ️  系统信息", show_header=True, header_style="bold cyan")
    table.add_column("项目", style="cyan", no_wrap=True)
    table.add_column("值", style="white")

    table.add_row("应用名称", "vmm-hardware")
    table.add_row("版本", __version__)
    table.add_row("操作系统", f"{platform.system()} {platform.release()}")
    table.add_row("Python 版本", f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}")
    table.add_row("Libvirt URI", app_config.libvirt.uri)
    table.add_row("编辑器", " ".join(app_config.editor.resolve_command()))
    table.add_row("用户", os.getenv("USER", "未知"))
    console.print(table)

    deps = ["libvirt-python", "pydantic", "typer", "rich", "loguru", "pyyaml"]
    dep_table = Table(title="📦 依赖库版本", show_header=True, header_style="bold magenta")
    dep_table.add_column("库名", style="cyan", no_wrap=True)
    dep_table.add_column("版本", style="green")
    dep_table.add_column("状态", justify="center")
    for dep in deps:
        try:
            dep_table.add_row(dep, importlib.metadata.version(dep), "✅")
        except importlib.metadata.PackageNotFoundError:
            dep_table.add_row(dep, "未安装", "❌")
    console.print(dep_table)


@app.command()
def generate_config(
    output: Annotated[
        Path,
        typer.Option(
            "--output", "-o",
            help="输出配置文件路径"
        )
    ] = Path("config.yaml"),
):
    """
    📝 生成示例配置文件

    生成一个包含所有可配置选项的示例配置文件。
    """
    try:
        Config().to_yaml_file(str(output))
    except OSError as e:
        console.print(f"[red]❌ 生成配置文件失败: {e}[/red]")
        raise typer.Exit(code=1)
    console.print(f"✅ 已生成示例配置文件: [bold blue]{output}[/bold blue]")
    console.print("请根据需要编辑配置文件后使用。")


def main_cli():
    """主入口点"""
    app()


if __name__ == '__main__':
    main_cli()
