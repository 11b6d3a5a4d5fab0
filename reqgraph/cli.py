"""
reqgraph CLI - Command line interface for the requirements store.

Commands:
- init, add, show, list, update, archive, delete, comment: requirements
- rel, reldef, type, user, feature: relationships and definitions
- config: identifier configuration and re-derivation
- project: registry of named requirements files
- migrate, export, import, audit, stats: storage and maintenance
"""

import json
import logging
import sys
from pathlib import Path
from typing import Dict, Optional, Tuple
from uuid import UUID

import click

from reqgraph import __version__
from reqgraph.config import config
from reqgraph.engine.record_store import RecordStore
from reqgraph.errors import ReqGraphError
from reqgraph.models.definitions import Cardinality, RelationshipDefinition, TypeDefinition
from reqgraph.models.project import IdConfiguration, IdFormat, NumberingStrategy
from reqgraph.models.requirement import Requirement, RequirementStatus
from reqgraph.store.base import open_backend
from reqgraph.store.mapping import generate_mapping_file
from reqgraph.store.migration import export_interchange, import_to_backend, migrate_backend
from reqgraph.store.registry import Registry, resolve_requirements_path

logger = logging.getLogger("reqgraph.cli")


def fail(error: Exception, code: int = 1) -> None:
    """Print an error with its taxonomy code and exit."""
    if isinstance(error, ReqGraphError):
        click.echo(f"Error [{error.code}]: {error.message}", err=True)
    else:
        click.echo(f"Error: {error}", err=True)
    sys.exit(code)


def parse_fields(pairs: Tuple[str, ...]) -> Dict[str, str]:
    """Parse ``name=value`` options."""
    fields = {}
    for pair in pairs:
        if "=" not in pair:
            raise click.BadParameter(f"expected name=value, got '{pair}'")
        name, value = pair.split("=", 1)
        fields[name.strip()] = value.strip()
    return fields


def status_change(store: RecordStore, req_type: str, value: str) -> Dict[str, str]:
    """Map a status given on the command line to ``status`` or ``custom_status``."""
    tdef = store.type_for(Requirement(title="-", req_type=req_type))
    standard = {s.value.lower(): s.value for s in RequirementStatus}
    if (tdef is None or tdef.uses_standard_statuses) and value.lower() in standard:
        return {"status": standard[value.lower()], "custom_status": None}
    return {"custom_status": value}


def print_requirement(req: Requirement) -> None:
    """Print a requirement in a readable form."""
    click.echo(f"\n=== {req.display_id}: {req.title} ===")
    click.echo(f"ID:       {req.id}")
    click.echo(f"Type:     {req.req_type}")
    click.echo(f"Status:   {req.effective_status}")
    click.echo(f"Priority: {req.priority.value}")
    click.echo(f"Feature:  {req.feature}")
    if req.owner:
        click.echo(f"Owner:    {req.owner}")
    if req.tags:
        click.echo(f"Tags:     {', '.join(sorted(req.tags))}")
    if req.archived:
        click.echo("Archived: yes")
    if req.description:
        click.echo(f"\n{req.description}")
    if req.custom_fields:
        click.echo("\n--- Fields ---")
        for name, value in sorted(req.custom_fields.items()):
            click.echo(f"  {name}: {value}")
    if req.comments:
        click.echo(f"\nComments: {len(req.comments)}")
    if req.history:
        click.echo(f"History entries: {len(req.history)}")


class Context:
    """State shared by all commands."""

    def __init__(self, db_path: Optional[Path] = None, project: Optional[str] = None):
        self._db_path = db_path
        self.project = project

    @property
    def db_path(self) -> Path:
        """The requirements file, resolved through the project registry on first use."""
        if self._db_path is None:
            self._db_path = resolve_requirements_path(project=self.project)
        return self._db_path

    def backend(self):
        return open_backend(self.db_path)

    def load(self) -> RecordStore:
        with self.backend() as backend:
            return backend.load()

    def update(self, update_fn) -> RecordStore:
        with self.backend() as backend:
            return backend.update(update_fn)


pass_context = click.make_pass_decorator(Context)


@click.group()
@click.version_option(version=__version__)
@click.option("--db", "db_path", type=click.Path(path_type=Path), default=None,
              help="Requirements file (.yaml/.yml or .db/.sqlite/.sqlite3)")
@click.option("--project", "-p", "project", default=None, help="Registered project to open")
@click.option("--verbose", "-v", count=True, help="Increase log output (-v info, -vv debug)")
@click.pass_context
def cli(ctx: click.Context, db_path: Optional[Path], project: Optional[str], verbose: int):
    """reqgraph - requirements store with typed relationships"""
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = getattr(logging, config.log_level.upper(), logging.WARNING)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")
    ctx.obj = Context(db_path, project)


# -- Requirements ---------------------------------------------------------------

@cli.command()
@click.option("--name", default="", help="Project name")
@click.option("--title", default="", help="Project title")
@pass_context
def init(ctx: Context, name: str, title: str):
    """Create an empty requirements file."""
    try:
        with ctx.backend() as backend:
            if backend.exists():
                click.echo(f"Already exists: {ctx.db_path}")
                return
            store = RecordStore()
            store.data.name = name
            store.data.title = title
            backend.save(store)
        click.echo(f"Created {ctx.db_path}")
    except ReqGraphError as e:
        fail(e)


@cli.command()
@click.argument("title")
@click.option("--description", "-d", default="", help="Detailed description")
@click.option("--type", "-t", "req_type", default="Functional", help="Requirement type")
@click.option("--priority", "-p", type=click.Choice(["High", "Medium", "Low"], case_sensitive=False),
              default="Medium")
@click.option("--status", "-s", default=None, help="Initial status")
@click.option("--feature", "-f", default=None, help="Feature name")
@click.option("--owner", "-o", default="", help="Owner")
@click.option("--tag", multiple=True, help="Tag (repeatable)")
@click.option("--prefix", default=None, help="ID prefix override")
@click.option("--field", multiple=True, help="Type field as name=value (repeatable)")
@pass_context
def add(ctx: Context, title: str, description: str, req_type: str, priority: str, status: Optional[str],
        feature: Optional[str], owner: str, tag: tuple, prefix: Optional[str], field: tuple):
    """Add a requirement."""
    def apply(store: RecordStore):
        values = dict(
            title=title, description=description, req_type=req_type, priority=priority.capitalize(),
            feature=feature or config.default_feature, owner=owner, tags=set(tag),
            prefix_override=prefix, custom_fields=parse_fields(field),
        )
        if status:
            values.update(status_change(store, req_type, status))
        created.append(store.add_requirement(Requirement(**values)))

    created = []
    try:
        ctx.update(apply)
    except ReqGraphError as e:
        fail(e)
    click.echo(f"Added {created[0].spec_id} ({created[0].id})")


@cli.command()
@click.argument("key")
@pass_context
def show(ctx: Context, key: str):
    """Show a requirement by alternate key or internal id."""
    try:
        store = ctx.load()
        req = store.resolve(key)
    except ReqGraphError as e:
        fail(e)
    print_requirement(req)
    related = store.relationships.related(req.id)
    if related:
        click.echo("\n--- Relationships ---")
        for kind, target in related:
            click.echo(f"  {kind} -> {target.display_id} {target.title}")


@cli.command("list")
@click.option("--feature", "-f", default=None)
@click.option("--type", "-t", "req_type", default=None)
@click.option("--status", "-s", default=None)
@click.option("--all", "include_archived", is_flag=True, help="Include archived requirements")
@pass_context
def list_requirements(ctx: Context, feature: Optional[str], req_type: Optional[str], status: Optional[str],
                      include_archived: bool):
    """List requirements."""
    try:
        store = ctx.load()
    except ReqGraphError as e:
        fail(e)
    reqs = store.list_requirements(feature=feature, req_type=req_type, status=status,
                                   include_archived=include_archived)
    if not reqs:
        click.echo("No requirements found")
        return
    for req in reqs:
        click.echo(f"{req.display_id:<16} {req.effective_status:<12} {req.priority.value:<6} {req.title}")


@cli.command()
@click.argument("key")
@click.option("--title", default=None)
@click.option("--description", "-d", default=None)
@click.option("--type", "-t", "req_type", default=None)
@click.option("--priority", "-p", type=click.Choice(["High", "Medium", "Low"], case_sensitive=False), default=None)
@click.option("--status", "-s", default=None)
@click.option("--feature", "-f", default=None)
@click.option("--owner", "-o", default=None)
@click.option("--tag", multiple=True, help="Replace tags (repeatable)")
@click.option("--field", multiple=True, help="Set a type field as name=value (repeatable)")
@click.option("--actor", default=None, help="Who makes the change")
@pass_context
def update(ctx: Context, key: str, title, description, req_type, priority, status, feature, owner,
           tag: tuple, field: tuple, actor: Optional[str]):
    """Update fields of a requirement."""
    def apply(store: RecordStore):
        req = store.resolve(key)
        changes = {
            name: value for name, value in dict(
                title=title, description=description, req_type=req_type,
                priority=priority.capitalize() if priority else None, feature=feature, owner=owner,
            ).items() if value is not None
        }
        if tag:
            changes["tags"] = set(tag)
        if field:
            changes["custom_fields"] = {**req.custom_fields, **parse_fields(field)}
        if status:
            changes.update(status_change(store, req_type or req.req_type, status))
        entries.append(store.update_requirement(req.id, actor=actor, **changes))

    entries = []
    try:
        ctx.update(apply)
    except ReqGraphError as e:
        fail(e)
    entry = entries[0]
    if entry is None:
        click.echo("Nothing changed")
        return
    for change in entry.changes:
        click.echo(f"  {change.field_name}: {change.old_value!r} -> {change.new_value!r}")


@cli.command()
@click.argument("key")
@click.option("--restore", is_flag=True, help="Unarchive instead")
@pass_context
def archive(ctx: Context, key: str, restore: bool):
    """Archive (or restore) a requirement."""
    try:
        ctx.update(lambda store: store.archive(key, archived=not restore))
    except ReqGraphError as e:
        fail(e)
    click.echo(f"{'Restored' if restore else 'Archived'} {key}")


@cli.command()
@click.argument("key")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@pass_context
def delete(ctx: Context, key: str, yes: bool):
    """Delete a requirement and the relationships pointing at it."""
    if not yes:
        click.confirm(f"Delete {key}?", abort=True)
    try:
        ctx.update(lambda store: store.remove_requirement(key))
    except ReqGraphError as e:
        fail(e)
    click.echo(f"Deleted {key}")


@cli.command()
@click.argument("key")
@click.argument("text")
@click.option("--reply-to", default=None, help="Parent comment id")
@click.option("--author", default=None)
@pass_context
def comment(ctx: Context, key: str, text: str, reply_to: Optional[str], author: Optional[str]):
    """Add a comment to a requirement."""
    try:
        parent = UUID(reply_to) if reply_to else None
    except ValueError:
        raise click.BadParameter(f"not a comment id: {reply_to}")
    try:
        ctx.update(lambda store: store.add_comment(key, author or config.default_actor, text, parent_id=parent))
    except ReqGraphError as e:
        fail(e)
    click.echo(f"Comment added to {key}")


# -- Relationships ------------------------------------------------------------

@cli.group()
def rel():
    """Manage relationships between requirements."""


@rel.command("add")
@click.argument("source")
@click.argument("kind")
@click.argument("target")
@pass_context
def rel_add(ctx: Context, source: str, kind: str, target: str):
    """Add SOURCE -KIND-> TARGET (and its inverse)."""
    try:
        ctx.update(lambda store: store.add_relationship(source, kind, target))
    except ReqGraphError as e:
        fail(e)
    click.echo(f"Added {source} -{kind}-> {target}")


@rel.command("remove")
@click.argument("source")
@click.argument("kind")
@click.argument("target")
@pass_context
def rel_remove(ctx: Context, source: str, kind: str, target: str):
    """Remove SOURCE -KIND-> TARGET (and its inverse)."""
    try:
        ctx.update(lambda store: store.remove_relationship(source, kind, target))
    except ReqGraphError as e:
        fail(e)
    click.echo(f"Removed {source} -{kind}-> {target}")


@rel.command("list")
@click.argument("key")
@click.option("--kind", "-k", default=None)
@pass_context
def rel_list(ctx: Context, key: str, kind: Optional[str]):
    """List outgoing relationships of a requirement."""
    try:
        store = ctx.load()
        req = store.resolve(key)
        related = store.relationships.related(req.id, kind)
    except ReqGraphError as e:
        fail(e)
    flags = {(e.rel_type, e.target_id): e.flag for e in req.relationships}
    for rel_kind, target in related:
        flag = flags.get((rel_kind, target.id))
        click.echo(f"{rel_kind:<14} {target.display_id:<16} {target.title}" + (f"  [{flag}]" if flag else ""))


@cli.group()
def reldef():
    """Manage relationship definitions."""


@reldef.command("list")
@pass_context
def reldef_list(ctx: Context):
    """List relationship definitions."""
    try:
        store = ctx.load()
    except ReqGraphError as e:
        fail(e)
    for d in store.data.relationship_definitions:
        extra = "symmetric" if d.symmetric else f"inverse={d.inverse or '-'}"
        marks = " hierarchical" if d.hierarchical else ""
        click.echo(f"{d.name:<14} {d.cardinality.value:<13} {extra}{marks}{' (built-in)' if d.built_in else ''}")


@reldef.command("add")
@click.argument("name")
@click.option("--display-name", default="")
@click.option("--description", default="")
@click.option("--inverse", default=None)
@click.option("--create-inverse", is_flag=True, help="Create the inverse definition if missing")
@click.option("--symmetric", is_flag=True)
@click.option("--hierarchical", is_flag=True)
@click.option("--allow-self", is_flag=True)
@click.option("--cardinality", default="many_to_many")
@click.option("--source-type", multiple=True)
@click.option("--target-type", multiple=True)
@pass_context
def reldef_add(ctx: Context, name, display_name, description, inverse, create_inverse, symmetric,
               hierarchical, allow_self, cardinality, source_type, target_type):
    """Add a relationship definition."""
    try:
        definition = RelationshipDefinition(
            name=name, display_name=display_name or name, description=description, inverse=inverse,
            symmetric=symmetric, hierarchical=hierarchical, allow_self=allow_self,
            cardinality=Cardinality.parse(cardinality),
            source_types=list(source_type), target_types=list(target_type),
        )
    except ValueError as e:
        fail(e)
    try:
        ctx.update(lambda store: store.add_relationship_definition(definition, create_inverse=create_inverse))
    except ReqGraphError as e:
        fail(e)
    click.echo(f"Added relationship definition {definition.name}")


@reldef.command("edit")
@click.argument("name")
@click.option("--display-name", default=None)
@click.option("--description", default=None)
@click.option("--color", default=None)
@click.option("--cardinality", default=None)
@click.option("--source-type", multiple=True)
@click.option("--target-type", multiple=True)
@pass_context
def reldef_edit(ctx: Context, name, display_name, description, color, cardinality, source_type, target_type):
    """Edit a relationship definition."""
    changes = {k: v for k, v in dict(display_name=display_name, description=description, color=color).items()
               if v is not None}
    try:
        if cardinality:
            changes["cardinality"] = Cardinality.parse(cardinality)
    except ValueError as e:
        fail(e)
    if source_type:
        changes["source_types"] = list(source_type)
    if target_type:
        changes["target_types"] = list(target_type)
    try:
        ctx.update(lambda store: store.edit_relationship_definition(name, **changes))
    except ReqGraphError as e:
        fail(e)
    click.echo(f"Updated relationship definition {name}")


@reldef.command("remove")
@click.argument("name")
@pass_context
def reldef_remove(ctx: Context, name: str):
    """Remove a custom relationship definition."""
    try:
        ctx.update(lambda store: store.remove_relationship_definition(name))
    except ReqGraphError as e:
        fail(e)
    click.echo(f"Removed relationship definition {name}")


# -- Types, users, features ---------------------------------------------------

@cli.group("type")
def type_group():
    """Manage requirement types."""


@type_group.command("list")
@pass_context
def type_list(ctx: Context):
    """List requirement types."""
    try:
        store = ctx.load()
    except ReqGraphError as e:
        fail(e)
    for t in store.data.type_definitions:
        click.echo(f"{t.name:<16} {t.prefix:<6} {', '.join(t.statuses)}")


@type_group.command("add")
@click.argument("name")
@click.argument("prefix")
@click.option("--status", multiple=True, help="Allowed status (repeatable)")
@click.option("--description", default="")
@pass_context
def type_add(ctx: Context, name: str, prefix: str, status: tuple, description: str):
    """Add a requirement type."""
    try:
        tdef = TypeDefinition(name=name, display_name=name, prefix=prefix, description=description,
                              statuses=list(status) or [s.value for s in RequirementStatus])
    except ValueError as e:
        fail(e)
    try:
        ctx.update(lambda store: store.add_type_definition(tdef))
    except ReqGraphError as e:
        fail(e)
    click.echo(f"Added type {tdef.name} ({tdef.prefix})")


@type_group.command("remove")
@click.argument("name")
@pass_context
def type_remove(ctx: Context, name: str):
    """Remove a requirement type no record uses."""
    try:
        ctx.update(lambda store: store.remove_type_definition(name))
    except ReqGraphError as e:
        fail(e)
    click.echo(f"Removed type {name}")


@cli.group()
def user():
    """Manage users."""


@user.command("add")
@click.argument("name")
@click.argument("handle")
@click.option("--email", default="")
@pass_context
def user_add(ctx: Context, name: str, handle: str, email: str):
    """Add a user."""
    added = []
    try:
        ctx.update(lambda store: added.append(store.add_user(name, handle, email)))
    except ReqGraphError as e:
        fail(e)
    click.echo(f"Added user {added[0].handle} ({added[0].spec_id})")


@cli.group()
def feature():
    """Manage features."""


@feature.command("add")
@click.argument("name")
@click.argument("prefix")
@click.option("--description", default="")
@pass_context
def feature_add(ctx: Context, name: str, prefix: str, description: str):
    """Add a numbered feature."""
    added = []
    try:
        ctx.update(lambda store: added.append(store.add_feature(name, prefix, description)))
    except ReqGraphError as e:
        fail(e)
    click.echo(f"Added feature {added[0].number} {added[0].name} ({added[0].prefix})")


# -- Identifier configuration ---------------------------------------------------

@cli.group("config")
def config_group():
    """Identifier configuration."""


@config_group.command("show")
@pass_context
def config_show(ctx: Context):
    """Show the identifier configuration and counters."""
    try:
        store = ctx.load()
    except ReqGraphError as e:
        fail(e)
    cfg = store.data.id_config
    click.echo(f"Format:    {cfg.format.value}")
    click.echo(f"Numbering: {cfg.numbering.value}")
    click.echo(f"Digits:    {cfg.digits}")
    click.echo(f"Next global number: {store.data.next_spec_number}")
    for key, value in sorted(store.data.prefix_counters.items()):
        click.echo(f"  {key}: next {value}")


def _requested_config(store: RecordStore, id_format, numbering, digits) -> IdConfiguration:
    current = store.data.id_config
    return IdConfiguration(
        format=IdFormat.parse(id_format) if id_format else current.format,
        numbering=NumberingStrategy.parse(numbering) if numbering else current.numbering,
        digits=digits or current.digits,
    )


@config_group.command("set")
@click.option("--format", "id_format", default=None, help="single_level or two_level")
@click.option("--numbering", default=None, help="global, per_prefix or per_feature_type")
@click.option("--digits", type=click.IntRange(1, 6), default=None)
@pass_context
def config_set(ctx: Context, id_format, numbering, digits):
    """Change the configuration for new records; existing keys are kept."""
    def apply(store: RecordStore):
        new = _requested_config(store, id_format, numbering, digits)
        store.configure_ids(new.format, new.numbering, new.digits)

    try:
        ctx.update(apply)
    except (ReqGraphError, ValueError) as e:
        fail(e)
    click.echo("Identifier configuration updated")


@config_group.command("rederive")
@click.option("--format", "id_format", default=None, help="single_level or two_level")
@click.option("--numbering", default=None, help="global, per_prefix or per_feature_type")
@click.option("--digits", type=click.IntRange(1, 6), default=None)
@click.option("--dry-run", is_flag=True, help="Show the new keys without saving")
@pass_context
def config_rederive(ctx: Context, id_format, numbering, digits, dry_run: bool):
    """Re-derive every alternate key under a new configuration."""
    changed = {}

    def apply(store: RecordStore):
        new = _requested_config(store, id_format, numbering, digits)
        if dry_run:
            keys, _ = store.allocator.plan_rederive(new)
            for req in store.requirements:
                if req.spec_id != keys[req.id]:
                    changed[req.id] = (req.spec_id, keys[req.id])
        else:
            changed.update(store.rederive_ids(new))

    try:
        if dry_run:
            apply(ctx.load())
        else:
            ctx.update(apply)
    except (ReqGraphError, ValueError) as e:
        fail(e)
    for old, new in changed.values():
        click.echo(f"  {old or '-'} -> {new}")
    click.echo(f"{len(changed)} key(s) {'would change' if dry_run else 'changed'}")


# -- Project registry -----------------------------------------------------------

@cli.group()
def project():
    """Registered projects."""


@project.command("add")
@click.argument("name")
@click.argument("path", type=click.Path(path_type=Path))
@click.option("--description", "-d", default="", help="Project description")
@click.option("--default", "make_default", is_flag=True, help="Make this the default project")
def project_add(name: str, path: Path, description: str, make_default: bool):
    """Register a requirements file under a name."""
    try:
        registry = Registry.load()
        registry.register_project(name, path.expanduser().resolve(), description)
        if make_default:
            registry.set_default_project(name)
        registry.save()
    except ReqGraphError as e:
        fail(e)
    click.echo(f"Registered project '{name}'")
    if make_default:
        click.echo(f"Project '{name}' set as default")


@project.command("list")
def project_list():
    """List registered projects."""
    try:
        registry = Registry.load()
    except ReqGraphError as e:
        fail(e)
    if not registry.projects:
        click.echo("No projects registered")
        return
    for name in registry.list_projects():
        entry = registry.projects[name]
        marker = "*" if name == registry.default_project else " "
        line = f"{marker} {name}: {entry.path}"
        if entry.description:
            line += f" ({entry.description})"
        click.echo(line)


@project.command("default")
@click.argument("name", required=False)
@click.option("--clear", is_flag=True, help="Clear the default project")
def project_default(name: Optional[str], clear: bool):
    """Show, set or clear the default project."""
    try:
        registry = Registry.load()
        if clear:
            registry.clear_default_project()
            registry.save()
            click.echo("Default project cleared")
            return
        if name is None:
            click.echo(registry.default_project or "No default project")
            return
        registry.set_default_project(name)
        registry.save()
    except ReqGraphError as e:
        fail(e)
    click.echo(f"Project '{name}' set as default")


@project.command("remove")
@click.argument("name")
def project_remove(name: str):
    """Forget a registered project; the file itself is kept."""
    try:
        registry = Registry.load()
        registry.unregister_project(name)
        registry.save()
    except ReqGraphError as e:
        fail(e)
    click.echo(f"Removed project '{name}'")


# -- Storage --------------------------------------------------------------------

@cli.command()
@click.argument("source", type=click.Path(path_type=Path))
@click.argument("destination", type=click.Path(path_type=Path))
@click.option("--overwrite", is_flag=True, help="Replace an existing destination")
def migrate(source: Path, destination: Path, overwrite: bool):
    """Copy a project between backends, e.g. requirements.yaml -> requirements.db."""
    try:
        count = migrate_backend(source, destination, overwrite=overwrite)
    except ReqGraphError as e:
        fail(e)
    click.echo(f"Migrated {count} requirement(s) to {destination}")


@cli.group()
def export():
    """Export data."""


@export.command("json")
@click.argument("path", type=click.Path(path_type=Path))
@pass_context
def export_json(ctx: Context, path: Path):
    """Export the project as a JSON interchange document."""
    try:
        count = export_interchange(ctx.load(), path)
    except ReqGraphError as e:
        fail(e)
    click.echo(f"Exported {count} requirement(s) to {path}")


@export.command("mapping")
@click.argument("path", type=click.Path(path_type=Path), required=False)
@pass_context
def export_mapping(ctx: Context, path: Optional[Path]):
    """Write the alternate-key mapping file for external tools."""
    path = path or config.mapping_path
    try:
        mapping = generate_mapping_file(ctx.load(), path)
    except ReqGraphError as e:
        fail(e)
    click.echo(f"Generated mapping file: {path}")
    click.echo(f"  Total mappings: {len(mapping.mappings)}")
    click.echo(f"  Next number: {mapping.next_number}")


@cli.command("import")
@click.argument("path", type=click.Path(path_type=Path))
@click.option("--into", "destination", type=click.Path(path_type=Path), default=None,
              help="Destination file (defaults to --db)")
@click.option("--overwrite", is_flag=True, help="Replace an existing destination")
@pass_context
def import_json(ctx: Context, path: Path, destination: Optional[Path], overwrite: bool):
    """Import a JSON interchange document."""
    try:
        destination = destination or ctx.db_path
        count, violations = import_to_backend(path, destination, overwrite=overwrite)
    except ReqGraphError as e:
        fail(e)
    click.echo(f"Imported {count} requirement(s) into {destination}")
    if violations:
        click.echo(f"\n{len(violations)} relationship(s) flagged:")
        for result in violations:
            click.echo(f"  [{result.code}] {result.error.message}")


@cli.command()
@click.option("--clear", is_flag=True, help="Clear advisory flags instead")
@pass_context
def audit(ctx: Context, clear: bool):
    """Check all relationships and flag violations."""
    results = []

    def apply(store: RecordStore):
        if clear:
            results.append(store.relationships.clear_flags())
        else:
            results.extend(store.relationships.audit())

    try:
        ctx.update(apply)
    except ReqGraphError as e:
        fail(e)
    if clear:
        click.echo(f"Cleared {results[0]} flag(s)")
        return
    if not results:
        click.echo("All relationships valid")
        return
    for result in results:
        click.echo(f"  [{result.code}] {result.error.message}")
    sys.exit(1)


@cli.command()
@pass_context
def stats(ctx: Context):
    """Show project statistics."""
    try:
        store = ctx.load()
    except ReqGraphError as e:
        fail(e)
    click.echo(json.dumps(store.stats(), indent=2, ensure_ascii=False))


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
