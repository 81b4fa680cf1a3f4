from rcs_follow.follow_me.follow_me_app import main

main()
