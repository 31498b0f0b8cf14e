from pg_stat_dumper.cli import main

raise SystemExit(main())
