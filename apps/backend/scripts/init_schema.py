"""Create the flowsynth tables in the database at FLOWSYNTH_PG_URL.

Flow and project rows live elsewhere; their ids are stored here as plain
foreign-key columns without constraints.
"""
import argparse
import os

import psycopg

DDL = """
create table if not exists research_input (
    id uuid primary key default gen_random_uuid(),
    project_id uuid,
    flow_id uuid not null,
    type text not null default 'other'
        check (type in ('interview_notes', 'transcript', 'screenshot', 'business_requirements', 'other')),
    content text not null,
    source_label text,
    attachment_url text,
    created_at timestamptz not null default now(),
    updated_at timestamptz not null default now()
);

create table if not exists requirement (
    id uuid primary key default gen_random_uuid(),
    project_id uuid,
    flow_id uuid not null,
    source_input_ids text[] not null default '{}',
    business_opportunity text not null default '',
    user_story text not null check (user_story <> ''),
    acceptance_criteria text[] not null default '{}',
    dfv_tag text check (dfv_tag in ('desirability', 'feasibility', 'viability')),
    status text not null default 'draft'
        check (status in ('active', 'draft', 'stale', 'unanchored')),
    created_at timestamptz not null default now(),
    updated_at timestamptz not null default now()
);
create index if not exists requirement_flow_idx on requirement (flow_id);
create index if not exists requirement_sources_idx on requirement using gin (source_input_ids);

create table if not exists flow_node (
    id uuid primary key default gen_random_uuid(),
    flow_id uuid not null,
    type text not null check (type in ('step', 'decision')),
    label text not null default '',
    position_x double precision not null default 0,
    position_y double precision not null default 0,
    created_at timestamptz not null default now(),
    updated_at timestamptz not null default now()
);
create index if not exists flow_node_flow_idx on flow_node (flow_id);

create table if not exists flow_edge (
    id uuid primary key default gen_random_uuid(),
    flow_id uuid not null,
    source_node_id uuid not null references flow_node (id) on delete cascade,
    target_node_id uuid not null references flow_node (id) on delete cascade,
    label text,
    created_at timestamptz not null default now()
);
create index if not exists flow_edge_flow_idx on flow_edge (flow_id);
"""


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--url", default=os.getenv("FLOWSYNTH_PG_URL"))
    args = parser.parse_args()
    if not args.url:
        raise SystemExit("FLOWSYNTH_PG_URL or --url is required")
    with psycopg.connect(args.url, autocommit=True) as conn:
        conn.execute(DDL)
    print("Schema ready")


if __name__ == "__main__":
    main()
