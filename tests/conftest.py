"""Shared pytest fixtures: small in-memory codebases."""

from __future__ import annotations

import textwrap

import pytest

HEADER_TSX = textwrap.dedent(
    """\
    import React, { useState } from 'react';
    import { useLocalStorage } from '../hooks/useLocalStorage';

    interface HeaderProps {
      title: string;
      onMenuToggle: () => void;
    }

    /**
     * Header component rendered at the top of every page of the application shell.
     */
    export function Header({ title, onMenuToggle }: HeaderProps) {
      const [theme, setTheme] = useLocalStorage('theme', 'light');
      const [open, setOpen] = useState(false);

      function toggleTheme() {
        setTheme(theme === 'light' ? 'dark' : 'light');
      }

      // The header collapses its actions into a menu on small screens.
      return (
        <header className="header">
          <button onClick={onMenuToggle}>Menu</button>
          <h1>{title}</h1>
          <nav className={open ? 'open' : 'closed'}>
            <button onClick={() => setOpen(!open)}>More</button>
            <button onClick={toggleTheme}>Theme</button>
          </nav>
        </header>
      );
    }

    export default Header;
    """
)

SIDEBAR_TSX = textwrap.dedent(
    """\
    import React from 'react';

    interface SidebarItem {
      label: string;
      href: string;
    }

    interface SidebarProps {
      items: SidebarItem[];
      collapsed: boolean;
    }

    export const Sidebar = ({ items, collapsed }: SidebarProps) => {
      if (collapsed) {
        return null;
      }

      return (
        <aside className="sidebar">
          <ul>
            {items.map((item) => (
              <li key={item.href}>
                <a href={item.href}>{item.label}</a>
              </li>
            ))}
          </ul>
        </aside>
      );
    };

    export default Sidebar;
    """
)

API_TS = textwrap.dedent(
    """\
    const BASE_URL = '/v1';

    export class HttpError extends Error {
      constructor(public status: number, message: string) {
        super(message);
      }
    }

    export async function fetchJson(url: string) {
      const response = await fetch(BASE_URL + url);
      if (!response.ok) {
        throw new HttpError(response.status, response.statusText);
      }
      return response.json();
    }

    export function buildQuery(params: Record<string, string>) {
      return Object.keys(params)
        .map((key) => encodeURIComponent(key) + '=' + encodeURIComponent(params[key]))
        .join('&');
    }

    export function getUsers(params: Record<string, string>) {
      return fetchJson('/users?' + buildQuery(params));
    }
    """
)

USE_LOCAL_STORAGE_TS = textwrap.dedent(
    """\
    import { useEffect, useState } from 'react';

    export function useLocalStorage<T>(key: string, initialValue: T) {
      const [value, setValue] = useState<T>(() => {
        const stored = window.localStorage.getItem(key);
        return stored ? JSON.parse(stored) : initialValue;
      });

      useEffect(() => {
        window.localStorage.setItem(key, JSON.stringify(value));
      }, [key, value]);

      return [value, setValue] as const;
    }
    """
)

HEADER_QUERY = "add a search input to the Header component"


@pytest.fixture
def header_files():
    """Four-file React project: two components, one hook, one utility module."""
    return {
        "src": {"type": "folder"},
        "src/components/Header.tsx": {"type": "file", "content": HEADER_TSX},
        "src/components/Sidebar.tsx": {"type": "file", "content": SIDEBAR_TSX},
        "src/utils/api.ts": {"type": "file", "content": API_TS},
        "src/hooks/useLocalStorage.ts": {"type": "file", "content": USE_LOCAL_STORAGE_TS},
    }


@pytest.fixture
def header_messages():
    return [{"role": "user", "content": f"[Model: gpt-4o]\n\n[Provider: OpenAI]\n\n{HEADER_QUERY}"}]


@pytest.fixture
def component_files():
    """Twenty-five near-identical small components."""
    files = {}
    for i in range(25):
        files[f"src/components/Component{i}.tsx"] = {
            "type": "file",
            "content": (
                "import React from 'react';\n\n"
                f"export function Component{i}() {{\n"
                f"  return <div className=\"component-{i}\">Component {i}</div>;\n"
                "}\n"
            ),
        }
    return files


@pytest.fixture
def python_files():
    """Small Python package with a relative import and cross-file calls."""
    return {
        "pkg/__init__.py": "",
        "pkg/util.py": textwrap.dedent(
            """\
            class Helper:
                def greet(self):
                    return 'hi'


            def helper_function(value):
                return Helper()
            """
        ),
        "pkg/app.py": textwrap.dedent(
            """\
            from .util import Helper, helper_function


            class App:
                def run(self):
                    h = helper_function(1)
                    return h.greet()


            def main():
                return App().run()
            """
        ),
    }
